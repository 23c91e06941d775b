"""Global on/off switch for gemmie."""

from __future__ import annotations

import logging

from app.storage.delay_queue import DelayQueueBackend

logger = logging.getLogger(__name__)

ENABLED_KEY = "gemmie:enabled"


class GemmieStatusService:
  def __init__(self, backend: DelayQueueBackend, admin_user_names: tuple[str, ...]) -> None:
    self._backend = backend
    self._allowed = {name.lower() for name in admin_user_names} | {"gemmie"}

  def can_toggle(self, user_name: str) -> bool:
    return user_name.strip().lower() in self._allowed

  async def is_enabled(self) -> bool:
    """Enabled unless explicitly switched off."""
    raw = await self._backend.get(ENABLED_KEY)
    return raw != "0"

  async def set_enabled(self, enabled: bool, user_name: str) -> bool:
    """Store the switch; returns False when user_name may not change it."""
    if not self.can_toggle(user_name):
      logger.warning("Unauthorized attempt to change gemmie status by %s", user_name)
      return False
    await self._backend.set(ENABLED_KEY, "1" if enabled else "0")
    logger.info("Gemmie status set to %s by %s", enabled, user_name)
    return True
