"""
Audit Service

Immutable, hash-chained audit trail for every change the scanner makes to
opportunities and coverage. Entries are written inside the caller's
transaction, so a rolled-back write leaves no audit entry behind.
"""

import hashlib
import json
from uuid import uuid4

from sqlalchemy import select, func, text
from sqlalchemy.ext.asyncio import AsyncSession

from oppscan.models import AuditLog

SYSTEM_ACTOR = "scanner"

# pg_advisory_xact_lock key serializing appends to the chain
CHAIN_LOCK_KEY = 0x6F707073


class AuditService:
    """Immutable, hash-chained audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _calculate_hash(self, content: dict, previous_hash: str | None) -> str:
        """SHA-256 hash of entry contents + previous hash."""
        payload = {
            "content": content,
            "previous_hash": previous_hash or "",
        }
        raw = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode()).hexdigest()

    async def _lock_chain_head(self):
        """Hold the chain until this transaction ends so concurrent appends cannot fork it.

        SQLite allows one writer at a time, so only PostgreSQL needs the lock.
        """
        if self.session.get_bind().dialect.name == "postgresql":
            await self.session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": CHAIN_LOCK_KEY})

    async def _get_latest_hash(self) -> str | None:
        result = await self.session.execute(
            select(AuditLog.current_hash)
            .order_by(AuditLog.id.desc())
            .limit(1)
        )
        return result.scalar()

    async def log_event(
        self,
        event_type: str,
        action: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict | None = None,
        actor: str = SYSTEM_ACTOR,
    ) -> AuditLog:
        """
        Write an immutable audit entry.

        Args:
            event_type: e.g. "opportunity_created", "coverage_refreshed"
            action: Human-readable description
            resource_type: "opportunity", "trigger", "merge_review", etc.
            resource_id: The ID of the affected resource
            details: Full event details as dict (must be JSON serializable)
            actor: who made the change; the scanner unless stated otherwise
        """
        await self._lock_chain_head()
        previous_hash = await self._get_latest_hash()

        # Round-trip through JSON so Decimals and dates hash the same way they are stored
        entry_details = json.loads(json.dumps(details or {}, default=str))
        content_for_hash = {
            "event_type": event_type,
            "actor": actor,
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "details": entry_details,
        }
        current_hash = self._calculate_hash(content_for_hash, previous_hash)

        entry = AuditLog(
            event_id=str(uuid4()),
            event_type=event_type,
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=entry_details,
            previous_hash=previous_hash,
            current_hash=current_hash,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def log_opportunity_created(self, opportunity_id: str, trigger_id: int | None, annual: object) -> AuditLog:
        return await self.log_event(
            event_type="opportunity_created",
            action=f"Opportunity {opportunity_id} created from trigger {trigger_id}",
            resource_type="opportunity",
            resource_id=opportunity_id,
            details={"trigger_id": trigger_id, "annual_margin_gain": annual},
        )

    async def log_opportunity_refreshed(self, opportunity_id: str, changes: dict) -> AuditLog:
        return await self.log_event(
            event_type="opportunity_refreshed",
            action=f"Opportunity {opportunity_id} refreshed by rescan",
            resource_type="opportunity",
            resource_id=opportunity_id,
            details=changes,
        )

    async def log_duplicate_removed(self, removed_id: str, kept_id: str, dedup_key: str) -> AuditLog:
        return await self.log_event(
            event_type="duplicate_removed",
            action=f"Duplicate {removed_id} removed in favour of {kept_id}",
            resource_type="opportunity",
            resource_id=removed_id,
            details={"kept_opportunity_id": kept_id, "dedup_key": dedup_key},
        )

    async def log_merge_review_opened(self, duplicate_id: str, kept_id: str, status: str) -> AuditLog:
        return await self.log_event(
            event_type="merge_review_opened",
            action=f"Duplicate {duplicate_id} ({status}) needs manual merge into {kept_id}",
            resource_type="opportunity",
            resource_id=duplicate_id,
            details={"kept_opportunity_id": kept_id, "duplicate_status": status},
        )

    async def log_coverage_refreshed(self, trigger_id: int, counts: dict) -> AuditLog:
        return await self.log_event(
            event_type="coverage_refreshed",
            action=f"Coverage refreshed for trigger {trigger_id}",
            resource_type="trigger",
            resource_id=str(trigger_id),
            details=counts,
        )

    async def verify_chain_integrity(self) -> dict:
        """Walk the full chain and verify each entry's hash."""
        result = await self.session.execute(
            select(AuditLog).order_by(AuditLog.id.asc())
        )
        entries = list(result.scalars())

        if not entries:
            return {"valid": True, "entries_checked": 0, "first_invalid": None}

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].current_hash if i > 0 else None
            if entry.previous_hash != expected_prev:
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "previous_hash mismatch",
                }

            content = {
                "event_type": entry.event_type,
                "actor": entry.actor,
                "action": entry.action,
                "resource_type": entry.resource_type,
                "resource_id": entry.resource_id,
                "details": entry.details,
            }
            expected_hash = self._calculate_hash(content, entry.previous_hash)
            if entry.current_hash != expected_hash:
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "current_hash mismatch (data tampered)",
                }

        return {"valid": True, "entries_checked": len(entries), "first_invalid": None}

    async def get_entry_count(self, event_type: str | None = None) -> int:
        query = select(func.count()).select_from(AuditLog)
        if event_type:
            query = query.where(AuditLog.event_type == event_type)
        result = await self.session.execute(query)
        return result.scalar() or 0
