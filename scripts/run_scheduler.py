"""AdSweep consolidated store sync daemon.

Usage:
    python scripts/run_scheduler.py                  # resync all, then every SYNC_INTERVAL_MINUTES
    python scripts/run_scheduler.py --interval 2
    python scripts/run_scheduler.py --once           # single sync_new_data pass and exit

SYNC_ON_START=false skips the startup full resync.
"""

import argparse
import asyncio
import io
import os
import signal
import sys
from pathlib import Path

_root = str(Path(__file__).resolve().parent.parent)
sys.path.insert(0, _root)
os.chdir(_root)
sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")

from dotenv import load_dotenv  # noqa: E402
load_dotenv(Path(_root) / ".env")

from loguru import logger  # noqa: E402
logger.remove()
logger.add(sys.stderr, level=os.getenv("LOG_LEVEL", "INFO"), format="{time:HH:mm:ss} | {level:<7} | {message}")
logger.add(
    str(Path(_root) / "logs" / "sync_{time:YYYY-MM-DD}.log"),
    rotation="1 day",
    retention="7 days",
    level="DEBUG",
    encoding="utf-8",
)

from database import init_db  # noqa: E402
from processor.sync_service import get_sync_service  # noqa: E402
from scheduler.scheduler import SyncScheduler  # noqa: E402


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Periodically sync worker artifacts into the consolidated store")
    parser.add_argument("--interval", type=int, default=None, help="minutes between sync passes")
    parser.add_argument("--once", action="store_true", help="run one incremental pass and exit")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    await init_db()

    if args.once:
        result = await get_sync_service().sync_new_data()
        logger.info("[sync] 단발 실행 결과: {}", result)
        return 0

    sched = SyncScheduler(interval_minutes=args.interval)
    await sched.run_initial_sync()
    sched.setup_schedules()
    sched.start()

    done = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, done.set)
        except NotImplementedError:
            # Windows: KeyboardInterrupt 로 빠져나감
            pass

    try:
        await done.wait()
    finally:
        sched.stop()
    logger.info("[sync] 마지막 실행 {} / {}", sched.last_run_at, sched.last_result)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
