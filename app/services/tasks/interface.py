from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Protocol

JobState = Literal["scheduled", "dispatched", "delivered", "failed"]


@dataclass(frozen=True)
class JobStatus:
  """Dispatcher view of one deferred job."""

  job_id: str
  scheduled_for: datetime | None
  state: JobState


class DeferredJobDispatcher(Protocol):
  """Interface for push-based delayed delivery of signed HTTP callbacks."""

  async def schedule(self, target_url: str, payload: dict[str, Any], delay_seconds: int) -> str | None:
    """Deliver payload to target_url after delay_seconds; return the job id or None on failure."""
    ...

  async def cancel(self, job_id: str) -> bool:
    """Cancel a job; False means the dispatcher no longer knows it."""
    ...

  async def get_status(self, job_id: str) -> JobStatus | None:
    """Return the job status or None when the job is unknown."""
    ...

  def verify(self, body: bytes, signature: str | None) -> bool:
    """Check that a callback body was signed by this dispatcher."""
    ...
