"""AdSweep worker pool runner.

Usage:
    python scripts/run_pool.py --workers 5 --duration 30m
    python scripts/run_pool.py --workers 3 --policy same_url --url https://www.newsbreak.com/new-york-ny
    python scripts/run_pool.py --workers 10 --duration unlimited --headful
    python scripts/run_pool.py --workers 5 --learn --reset-rules

Ctrl+C or SIGTERM stops every worker; each worker's artifact is saved before exit.
"""

import argparse
import asyncio
import io
import os
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

_logs_dir = Path(_root) / "logs"
_logs_dir.mkdir(exist_ok=True)
logger.add(
    str(_logs_dir / "pool_{time:YYYY-MM-DD}.log"),
    rotation="1 day",
    retention="7 days",
    level="DEBUG",
    encoding="utf-8",
)

from crawler.config import crawler_settings  # noqa: E402
from crawler.errors import PoolStartError  # noqa: E402
from crawler.learned_rules import LearnedRuleStore  # noqa: E402
from crawler.url_rotation import POLICIES, ROTATE_BY_CITY_LIST  # noqa: E402
from crawler.worker_pool import PoolConfig, WorkerPoolOrchestrator  # noqa: E402
from database import init_db  # noqa: E402
from processor.sync_service import SyncService  # noqa: E402


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run N concurrent native ad extraction workers")
    parser.add_argument("--workers", type=int, default=crawler_settings.default_workers,
                        help=f"worker count (1-{crawler_settings.max_workers})")
    parser.add_argument("--duration", default=None,
                        help='run budget: "30m", "2h", "1h30m", seconds, or "unlimited"')
    parser.add_argument("--policy", choices=POLICIES, default=ROTATE_BY_CITY_LIST)
    parser.add_argument("--url", default=None, help="target URL for same_url policy")
    parser.add_argument("--url-file", default=None, help="newline separated URL list for rotation")
    parser.add_argument("--device", choices=("desktop", "mobile"), default="desktop")
    parser.add_argument("--headful", action="store_true", help="show browser windows")
    parser.add_argument("--poll-interval", type=float, default=None, help="seconds between polls")
    parser.add_argument("--learn", action="store_true", help="learn selectors from high-confidence ads")
    parser.add_argument("--reset-rules", action="store_true", help="clear learned selectors before starting")
    parser.add_argument("--no-sync", action="store_true", help="skip consolidated store sync at the end")
    return parser.parse_args(argv)


def _load_url_file(path: str | None) -> list[str] | None:
    if not path:
        return None
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip() and not line.startswith("#")]


async def main(argv=None) -> int:
    args = parse_args(argv)
    config = PoolConfig(
        worker_count=args.workers,
        policy=args.policy,
        target_url=args.url,
        url_list=_load_url_file(args.url_file),
        duration=args.duration,
        device_mode=args.device,
        headless=not args.headful,
        poll_interval_sec=args.poll_interval,
        learn_rules=args.learn,
    )

    sync_service = None
    if not args.no_sync:
        await init_db()
        sync_service = SyncService()

    rule_store = LearnedRuleStore(crawler_settings.learned_rules_path)
    if args.reset_rules:
        rule_store.reset()
        logger.info("Learned selectors cleared: {}", rule_store.path)

    pool = WorkerPoolOrchestrator(sync_service=sync_service, rule_store=rule_store)
    pool.install_signal_handlers()

    try:
        run_id = await pool.start(config)
    except ValueError as e:
        logger.error("Invalid pool config: {}", e)
        return 2
    except PoolStartError as e:
        logger.error("Pool start failed: {}", e)
        return 1

    logger.info("Pool {} running. Ctrl+C to stop.", run_id)
    await pool.wait()

    status = pool.get_status()
    logger.info(
        "Pool {} finished: {} ads, {} errors, {} failed workers, runtime {}",
        run_id, status["total_ads"], status["total_errors"],
        status["failed_workers"], status["runtime"],
    )
    for worker_id, summary in status["workers"].items():
        logger.info("  worker-{} [{}] {} ads  {}", worker_id, summary["status"],
                    summary["ads_extracted"], summary["url"])
    return 0 if status["failed_workers"] < status["worker_count"] else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
