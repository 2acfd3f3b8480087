"""
ScanRun model - records every scan pass with config snapshot and per-trigger stats.
"""

from datetime import datetime

from sqlalchemy import String, Integer, DateTime, Float, func
from sqlalchemy.orm import Mapped, mapped_column

from oppscan.database import Base, JSONType


class ScanRun(Base):
    __tablename__ = "scan_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    run_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    scope: Mapped[str] = mapped_column(String(20))  # "trigger" | "catalog"
    trigger_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="running")  # running, completed, failed, partial
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    config_snapshot: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    stats: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
