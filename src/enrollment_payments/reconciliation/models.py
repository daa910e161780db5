"""Models for the payment reconciliation sweep."""

from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

DEFAULT_BATCH_SIZE = 25
MAX_BATCH_SIZE = 50
DEFAULT_AGE_MINUTES = 10


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def clamp_batch_size(value: Any) -> int:
    """Batch size from an untrusted value: default 25, bounded to [1, 50]."""
    parsed = _to_int(value)
    if parsed is None:
        parsed = DEFAULT_BATCH_SIZE
    return max(1, min(MAX_BATCH_SIZE, parsed))


def clamp_age_minutes(value: Any) -> int:
    """Minimum submission age from an untrusted value: default 10, at least 1."""
    parsed = _to_int(value)
    if parsed is None:
        parsed = DEFAULT_AGE_MINUTES
    return max(1, parsed)


class SweepRequest(BaseModel):
    """Parameters of one reconciliation sweep."""
    max_items: int = Field(default=DEFAULT_BATCH_SIZE, ge=1, le=MAX_BATCH_SIZE)
    age_minutes: int = Field(default=DEFAULT_AGE_MINUTES, ge=1)

    @classmethod
    def from_params(cls, max_items: Any = None, age_minutes: Any = None) -> "SweepRequest":
        return cls(
            max_items=clamp_batch_size(max_items),
            age_minutes=clamp_age_minutes(age_minutes),
        )


class SweepItemResult(BaseModel):
    """Outcome for one submission: a derived status or an error code/message."""
    submission_id: str
    status: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SweepResult(BaseModel):
    """Aggregate outcome of a sweep, returned as a single response."""
    processed: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    results: List[SweepItemResult] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
            "timestamp": self.timestamp.isoformat(),
        }


class StatusCheckResult(BaseModel):
    """Outcome of checking a single submission against the provider."""
    submission_id: str
    status: str
    mp: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submission_id": self.submission_id,
            "status": self.status,
            "mp": self.mp,
            "timestamp": self.timestamp.isoformat(),
        }
