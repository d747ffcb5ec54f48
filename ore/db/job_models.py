"""SQLAlchemy ORM model for the background job outbox.

Jobs are inserted by request handlers (usually inside the same transaction as
the state change that caused them) and consumed by the job dispatcher.

``state`` progresses: ``not_started`` → ``started`` → ``done``, or back to
``not_started`` with a later ``retry_at`` after a failed attempt, or
``fatal_failure`` once the attempt budget is spent.  ``claimed_at`` is set
when a dispatcher claims the job; a ``started`` row whose claim is older
than the dispatcher lease is claimed again.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from ore.db.database import Base


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _new_uuid() -> str:
    return str(uuid.uuid4())


class Job(Base):
    """A queued asynchronous side effect (forum topic sync, replies...)."""

    __tablename__ = "ore_jobs"
    __table_args__ = (
        Index("ix_ore_jobs_state_retry_at", "state", "retry_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    job_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default="not_started")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retry_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now, onupdate=_utc_now
    )
