"""Drive the Redis dispatcher during local development.

Polls the running service so due jobs get delivered and stale pending jobs get swept:

  python scripts/run_local_dispatcher.py --base-url http://localhost:8002
"""

import argparse
import asyncio
import logging
import os

import httpx

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger("local_dispatcher")


async def run(base_url: str, secret: str, interval: float, sweep_every: int) -> None:
  headers = {"X-Gemmie-Task-Secret": secret}
  ticks = 0
  async with httpx.AsyncClient(base_url=base_url, headers=headers, timeout=130.0, trust_env=False) as client:
    while True:
      try:
        response = await client.post("/internal/tasks/deliver-due")
        response.raise_for_status()
        delivered = response.json().get("delivered", 0)
        if delivered:
          logger.info("Delivered %s job(s)", delivered)

        ticks += 1
        if ticks % sweep_every == 0:
          sweep = await client.post("/api/gemmie/cleanup-orphans")
          sweep.raise_for_status()
          if sweep.json().get("orphaned"):
            logger.warning("Orphan sweep: %s", sweep.json())
      except httpx.HTTPError as exc:
        logger.error("Dispatcher tick failed: %s", exc)

      await asyncio.sleep(interval)


def main() -> None:
  parser = argparse.ArgumentParser(description="Deliver due gemmie jobs for the local Redis dispatcher.")
  parser.add_argument("--base-url", default=os.getenv("GEMMIE_BASE_URL", "http://localhost:8002"))
  parser.add_argument("--interval", type=float, default=1.0, help="Seconds between delivery polls.")
  parser.add_argument("--sweep-every", type=int, default=60, help="Run the orphan sweep every N polls.")
  args = parser.parse_args()

  secret = os.getenv("GEMMIE_TASK_SECRET")
  if not secret:
    raise SystemExit("GEMMIE_TASK_SECRET must be set.")

  try:
    asyncio.run(run(args.base_url, secret, args.interval, args.sweep_every))
  except KeyboardInterrupt:
    logger.info("Stopped.")


if __name__ == "__main__":
  main()
