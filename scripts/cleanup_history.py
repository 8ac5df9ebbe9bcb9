import argparse
import logging
import time

from recorder.config_loader import load_config
from storage.history import HistoryCorruptError, HistoryStore


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("HistoryCleanup")


def prune_all(*, config, keep_days: int) -> int:
    store = HistoryStore(
        timezone=config.timezone,
        date_format=config.date_format,
        retention_days=keep_days,
        nest_by_realm=config.nest_by_realm,
    )
    cutoff = store.cutoff_key()
    removed = 0
    for path in sorted({t.path for t in config.realms}):
        try:
            removed += store.prune(path, cutoff)
        except HistoryCorruptError as e:
            logger.error("Skipping corrupt history %s: %s", path, e)
    return removed


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Delete saturation history entries older than N days")
    p.add_argument("--config", default=None)
    p.add_argument("--keep-days", type=int, default=None, help="Default: retention_days from config")
    p.add_argument("--interval-seconds", type=int, default=86400)
    p.add_argument("--loop", action="store_true", help="Run periodically")
    args = p.parse_args(argv)

    config = load_config(args.config)
    keep_days = args.keep_days if args.keep_days is not None else config.retention_days
    if keep_days <= 0:
        raise SystemExit("--keep-days must be > 0")

    while True:
        try:
            removed = prune_all(config=config, keep_days=keep_days)
            logger.info("Removed %s entries older than %s days", removed, keep_days)
        except OSError as e:
            logger.warning("Cleanup failed: %s", e)

        if not args.loop:
            return 0
        time.sleep(max(10, int(args.interval_seconds)))


if __name__ == "__main__":
    raise SystemExit(main())
