from __future__ import annotations

import logging
import time
from typing import Any

from google.api_core import exceptions as gcp_exceptions
from google.cloud import tasks_v2
from google.protobuf import timestamp_pb2

from app.config import Settings
from app.services.tasks.interface import DeferredJobDispatcher, JobStatus
from app.services.tasks.signing import SIGNATURE_HEADER, encode_body, require_secret, sign_body, verify_signature

logger = logging.getLogger(__name__)


class CloudTasksDispatcher(DeferredJobDispatcher):
  """Schedules signed HTTP callbacks on Google Cloud Tasks."""

  def __init__(self, settings: Settings, client: tasks_v2.CloudTasksAsyncClient | None = None) -> None:
    self.settings = settings
    self.client = client or tasks_v2.CloudTasksAsyncClient()

  async def schedule(self, target_url: str, payload: dict[str, Any], delay_seconds: int) -> str | None:
    """Create a task that fires after delay_seconds."""
    if not self.settings.cloud_tasks_queue_path:
      logger.error("Cloud Tasks queue path not configured.")
      return None

    body = encode_body(payload)
    schedule_time = timestamp_pb2.Timestamp()
    schedule_time.FromSeconds(int(time.time()) + delay_seconds)
    task = {
      "http_request": {
        "http_method": tasks_v2.HttpMethod.POST,
        "url": target_url,
        "headers": {"Content-Type": "application/json", SIGNATURE_HEADER: sign_body(require_secret(self.settings.task_secret), body)},
        "body": body,
      },
      "schedule_time": schedule_time,
    }

    try:
      response = await self.client.create_task(request={"parent": self.settings.cloud_tasks_queue_path, "task": task})
    except gcp_exceptions.GoogleAPICallError as e:
      logger.error("Failed to create Cloud Task for %s: %s", target_url, e, exc_info=True)
      return None

    logger.info("Scheduled task %s for %s in %ss", response.name, target_url, delay_seconds)
    return response.name or None

  async def cancel(self, job_id: str) -> bool:
    try:
      await self.client.delete_task(name=job_id)
    except gcp_exceptions.NotFound:
      return False
    return True

  async def get_status(self, job_id: str) -> JobStatus | None:
    try:
      task = await self.client.get_task(name=job_id)
    except gcp_exceptions.NotFound:
      return None
    state = "dispatched" if task.dispatch_count else "scheduled"
    return JobStatus(job_id=job_id, scheduled_for=task.schedule_time, state=state)

  def verify(self, body: bytes, signature: str | None) -> bool:
    return verify_signature(self.settings.task_secret, body, signature)
