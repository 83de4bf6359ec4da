"""SQLModel ORM tables for investigations, findings and the AI job queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text
from sqlmodel import Field, SQLModel


class Investigation(SQLModel, table=True):
    __tablename__ = "investigations"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    target: str
    investigation_type: str = Field(index=True)
    status: str = Field(default="pending", index=True)
    requested_by: str | None = None
    requested_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class OsintResult(SQLModel, table=True):
    __tablename__ = "osint_results"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_osint_results_investigation_time", "investigation_id", "collected_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    investigation_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("investigations.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    tool_name: str
    data_type: str
    raw_data: str = Field(default="", sa_column=Column(Text, nullable=False))
    summary: str | None = Field(default=None, sa_column=Column(Text))
    confidence_score: str | None = None
    collected_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AiJob(SQLModel, table=True):
    __tablename__ = "ai_jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_ai_jobs_queue", "status", "run_after", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    investigation_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("investigations.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    job_type: str
    status: str = Field(index=True)
    model: str | None = None
    prompt: str | None = Field(default=None, sa_column=Column(Text))
    debug: bool = Field(default=False)
    attempt_count: int = Field(default=0)
    max_attempts: int = Field(default=3)
    run_after: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    worker_id: str | None = Field(default=None, index=True)
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    last_attempt_started_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    last_attempt_completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    last_duration_ms: float | None = None
    result: str | None = Field(default=None, sa_column=Column(Text))
    result_format: str = Field(default="markdown_sections_v1")
    structured_result_json: str | None = Field(default=None, sa_column=Column(Text))
    error: str | None = Field(default=None, sa_column=Column(Text))
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    error_info_json: str | None = Field(default=None, sa_column=Column(Text))
    debug_info_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AiJobEvent(SQLModel, table=True):
    __tablename__ = "ai_job_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_ai_job_events_job_time", "job_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    job_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("ai_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
