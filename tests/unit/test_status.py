from __future__ import annotations

import pytest
from fakes import InMemoryDelayQueue

from app.services.status import GemmieStatusService


def _service() -> GemmieStatusService:
  return GemmieStatusService(InMemoryDelayQueue(), ("arham",))


def test_only_admins_and_gemmie_may_toggle() -> None:
  service = _service()
  assert service.can_toggle("Arham")
  assert service.can_toggle(" gemmie ")
  assert not service.can_toggle("sam")


@pytest.mark.anyio
async def test_enabled_until_switched_off() -> None:
  service = _service()
  assert await service.is_enabled()

  assert await service.set_enabled(False, "arham")
  assert not await service.is_enabled()

  assert await service.set_enabled(True, "gemmie")
  assert await service.is_enabled()


@pytest.mark.anyio
async def test_unauthorized_toggle_is_refused() -> None:
  service = _service()
  assert not await service.set_enabled(False, "sam")
  assert await service.is_enabled()
