"""SQLAlchemy models for stored trials and report records."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base


class TrialORM(Base):
    __tablename__ = "trials"
    __table_args__ = (
        UniqueConstraint("session_id", "sequence_number", name="uq_trial_session_seq"),
        Index("ix_trials_timestamp", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), index=True)
    sequence_number: Mapped[int] = mapped_column(Integer)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    value: Mapped[int] = mapped_column(Integer)
    mode: Mapped[str] = mapped_column(String(32), default="standard")
    intention: Mapped[str] = mapped_column(String(32), default="baseline")


class ReportORM(Base):
    __tablename__ = "reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(64), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    result: Mapped[Dict[str, Any]] = mapped_column(JSON)
    metadata_json: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict)


__all__ = ["TrialORM", "ReportORM"]
