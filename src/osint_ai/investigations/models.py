"""Read models and inputs for investigations and their findings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class InvestigationCreate:
    target: str
    investigation_type: str
    requested_by: str | None = None


@dataclass(slots=True)
class InvestigationView:
    investigation_id: int
    target: str
    investigation_type: str
    status: str
    requested_by: str | None
    requested_at: datetime


@dataclass(slots=True)
class FindingCreate:
    """One collected observation to attach to an investigation."""

    investigation_id: int
    tool_name: str
    data_type: str
    raw_data: str = ""
    summary: str | None = None
    confidence_score: str | None = None
    collected_at: datetime | None = None


@dataclass(slots=True)
class FindingView:
    finding_id: int
    investigation_id: int
    tool_name: str
    data_type: str
    raw_data: str
    summary: str | None
    confidence_score: str | None
    collected_at: datetime
