"""Create scanner tables

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-19 09:00:00.000000

Pharmacies, patients, prescriptions, triggers, coverage records,
opportunities, data-quality issues, merge reviews, scan runs and the
audit log.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'e1f2a3b4c5d6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'pharmacies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('pharmacy_code', sa.String(30), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('npi', sa.String(10), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_pharmacies_pharmacy_code', 'pharmacies', ['pharmacy_code'], unique=True)

    op.create_table(
        'patients',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('pharmacy_id', sa.Integer(), sa.ForeignKey('pharmacies.id'), nullable=False),
        sa.Column('external_id', sa.String(50), nullable=True),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('primary_insurance_bin', sa.String(10), nullable=True),
        sa.Column('primary_insurance_group', sa.String(30), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_patients_pharmacy_id', 'patients', ['pharmacy_id'])
    op.create_index('ix_patients_external_id', 'patients', ['external_id'])

    op.create_table(
        'prescriptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('claim_id', sa.String(40), nullable=False),
        sa.Column('pharmacy_id', sa.Integer(), sa.ForeignKey('pharmacies.id'), nullable=False),
        sa.Column('patient_id', sa.Integer(), sa.ForeignKey('patients.id'), nullable=False),
        sa.Column('dispensed_date', sa.Date(), nullable=True),
        sa.Column('drug_name', sa.String(200), nullable=True),
        sa.Column('ndc', sa.String(15), nullable=True),
        sa.Column('quantity_dispensed', sa.Numeric(10, 2), nullable=True),
        sa.Column('days_supply', sa.Integer(), nullable=True),
        sa.Column('insurance_bin', sa.String(10), nullable=True),
        sa.Column('insurance_group', sa.String(30), nullable=True),
        sa.Column('contract_id', sa.String(30), nullable=True),
        sa.Column('plan_name', sa.String(100), nullable=True),
        sa.Column('prescriber_name', sa.String(200), nullable=True),
        sa.Column('prescriber_npi', sa.String(10), nullable=True),
        sa.Column('insurance_pay', sa.Numeric(12, 2), nullable=True),
        sa.Column('patient_pay', sa.Numeric(12, 2), nullable=True),
        sa.Column('acquisition_cost', sa.Numeric(12, 2), nullable=True),
        sa.Column('raw_data', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_prescriptions_claim_id', 'prescriptions', ['claim_id'], unique=True)
    op.create_index('ix_prescriptions_pharmacy_id', 'prescriptions', ['pharmacy_id'])
    op.create_index('ix_prescriptions_patient_id', 'prescriptions', ['patient_id'])
    op.create_index('ix_prescriptions_dispensed_date', 'prescriptions', ['dispensed_date'])
    op.create_index('ix_prescriptions_ndc', 'prescriptions', ['ndc'])
    op.create_index('ix_prescriptions_insurance_bin', 'prescriptions', ['insurance_bin'])

    op.create_table(
        'triggers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('trigger_key', sa.String(80), nullable=False),
        sa.Column('display_name', sa.String(200), nullable=False),
        sa.Column('trigger_type', sa.String(40), nullable=False, server_default='therapeutic_interchange'),
        sa.Column('detection_keywords', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('exclude_keywords', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('keyword_match_mode', sa.String(5), nullable=False, server_default='any'),
        sa.Column('recommended_drug', sa.String(200), nullable=True),
        sa.Column('recommended_ndc', sa.String(15), nullable=True),
        sa.Column('expected_qty', sa.Numeric(10, 2), nullable=True),
        sa.Column('expected_days_supply', sa.Integer(), nullable=True),
        sa.Column('default_profit', sa.Numeric(10, 2), nullable=True),
        sa.Column('annual_fills', sa.Integer(), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('clinical_rationale', sa.Text(), nullable=True),
        sa.Column('bin_inclusions', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('bin_exclusions', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('group_inclusions', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('group_exclusions', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('contract_prefix_exclusions', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('pharmacy_inclusions', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('if_has_keywords', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('if_not_has_keywords', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_triggers_trigger_key', 'triggers', ['trigger_key'], unique=True)
    op.create_index('ix_triggers_is_enabled', 'triggers', ['is_enabled'])

    op.create_table(
        'coverage_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('trigger_id', sa.Integer(), sa.ForeignKey('triggers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('insurance_bin', sa.String(10), nullable=False),
        sa.Column('insurance_group', sa.String(30), nullable=False, server_default=''),
        sa.Column('coverage_status', sa.String(10), nullable=False, server_default='unknown'),
        sa.Column('verified_claim_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('matched_claim_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('profit_per_fill', sa.Numeric(10, 2), nullable=True),
        sa.Column('best_drug_name', sa.String(200), nullable=True),
        sa.Column('best_ndc', sa.String(15), nullable=True),
        sa.Column('is_excluded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_manual_override', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('manual_profit', sa.Numeric(10, 2), nullable=True),
        sa.Column('manual_drug_name', sa.String(200), nullable=True),
        sa.Column('manual_ndc', sa.String(15), nullable=True),
        sa.Column('manual_note', sa.String(500), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('trigger_id', 'insurance_bin', 'insurance_group', name='uq_coverage_trigger_bin_group'),
    )
    op.create_index('ix_coverage_records_trigger_id', 'coverage_records', ['trigger_id'])
    op.create_index('ix_coverage_records_insurance_bin', 'coverage_records', ['insurance_bin'])

    op.create_table(
        'opportunities',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('opportunity_id', sa.String(40), nullable=False),
        sa.Column('pharmacy_id', sa.Integer(), sa.ForeignKey('pharmacies.id'), nullable=False),
        sa.Column('patient_id', sa.Integer(), sa.ForeignKey('patients.id'), nullable=False),
        sa.Column('trigger_id', sa.Integer(), sa.ForeignKey('triggers.id'), nullable=True),
        sa.Column('prescription_id', sa.Integer(), sa.ForeignKey('prescriptions.id'), nullable=True),
        sa.Column('opportunity_type', sa.String(40), nullable=False, server_default='therapeutic_interchange'),
        sa.Column('current_drug_name', sa.String(200), nullable=True),
        sa.Column('current_ndc', sa.String(15), nullable=True),
        sa.Column('recommended_drug_name', sa.String(200), nullable=True),
        sa.Column('recommended_ndc', sa.String(15), nullable=True),
        sa.Column('insurance_bin', sa.String(10), nullable=True),
        sa.Column('insurance_group', sa.String(30), nullable=True),
        sa.Column('potential_margin_gain', sa.Numeric(12, 2), nullable=True),
        sa.Column('annual_margin_gain', sa.Numeric(12, 2), nullable=True),
        sa.Column('coverage_confidence', sa.String(10), nullable=False, server_default='unknown'),
        sa.Column('status', sa.String(20), nullable=False, server_default='Not Submitted'),
        sa.Column('prescriber_name', sa.String(200), nullable=True),
        sa.Column('prescriber_npi', sa.String(10), nullable=True),
        sa.Column('clinical_rationale', sa.Text(), nullable=True),
        sa.Column('staff_notes', sa.Text(), nullable=True),
        sa.Column('scan_batch_id', sa.String(64), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_opportunities_opportunity_id', 'opportunities', ['opportunity_id'], unique=True)
    op.create_index('ix_opportunities_pharmacy_id', 'opportunities', ['pharmacy_id'])
    op.create_index('ix_opportunities_patient_id', 'opportunities', ['patient_id'])
    op.create_index('ix_opportunities_trigger_id', 'opportunities', ['trigger_id'])
    op.create_index('ix_opportunities_status', 'opportunities', ['status'])
    op.create_index('ix_opportunities_scan_batch_id', 'opportunities', ['scan_batch_id'])
    # One live opportunity per patient and recommended drug
    op.execute(
        "CREATE UNIQUE INDEX uq_opportunities_live_patient_drug ON opportunities "
        "(pharmacy_id, patient_id, UPPER(recommended_drug_name)) "
        "WHERE status NOT IN ('Denied', 'Declined')"
    )

    op.create_table(
        'data_quality_issues',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('opportunity_id', sa.Integer(), sa.ForeignKey('opportunities.id', ondelete='CASCADE'), nullable=False),
        sa.Column('pharmacy_id', sa.Integer(), sa.ForeignKey('pharmacies.id'), nullable=False),
        sa.Column('patient_id', sa.Integer(), sa.ForeignKey('patients.id'), nullable=True),
        sa.Column('issue_type', sa.String(30), nullable=False),
        sa.Column('field_name', sa.String(50), nullable=False),
        sa.Column('original_value', sa.String(200), nullable=True),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('resolved_value', sa.String(200), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_data_quality_issues_opportunity_id', 'data_quality_issues', ['opportunity_id'])
    op.create_index('ix_data_quality_issues_pharmacy_id', 'data_quality_issues', ['pharmacy_id'])
    op.create_index('ix_data_quality_issues_issue_type', 'data_quality_issues', ['issue_type'])
    op.create_index('ix_data_quality_issues_status', 'data_quality_issues', ['status'])

    op.create_table(
        'merge_reviews',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('kept_opportunity_id', sa.String(40), nullable=False),
        sa.Column('duplicate_opportunity_id', sa.String(40), nullable=False),
        sa.Column('dedup_key', sa.String(300), nullable=False),
        sa.Column('reason', sa.String(500), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_merge_reviews_kept_opportunity_id', 'merge_reviews', ['kept_opportunity_id'])
    op.create_index('ix_merge_reviews_duplicate_opportunity_id', 'merge_reviews', ['duplicate_opportunity_id'])

    op.create_table(
        'scan_runs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('run_id', sa.String(64), nullable=False),
        sa.Column('scope', sa.String(20), nullable=False),
        sa.Column('trigger_id', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='running'),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.Column('config_snapshot', postgresql.JSONB(), nullable=True),
        sa.Column('stats', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_scan_runs_run_id', 'scan_runs', ['run_id'], unique=True)
    op.create_index('ix_scan_runs_trigger_id', 'scan_runs', ['trigger_id'])

    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('event_id', sa.String(36), nullable=False),
        sa.Column('event_type', sa.String(30), nullable=False),
        sa.Column('actor', sa.String(100), nullable=False),
        sa.Column('action', sa.String(500), nullable=False),
        sa.Column('resource_type', sa.String(30), nullable=True),
        sa.Column('resource_id', sa.String(50), nullable=True),
        sa.Column('details', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('previous_hash', sa.String(64), nullable=True),
        sa.Column('current_hash', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_audit_log_event_id', 'audit_log', ['event_id'], unique=True)
    op.create_index('ix_audit_log_event_type', 'audit_log', ['event_type'])
    op.create_index('ix_audit_log_created_at', 'audit_log', ['created_at'])


def downgrade() -> None:
    for table in (
        'audit_log', 'scan_runs', 'merge_reviews', 'data_quality_issues',
        'opportunities', 'coverage_records', 'triggers', 'prescriptions',
        'patients', 'pharmacies',
    ):
        op.drop_table(table)
