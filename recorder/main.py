import argparse
import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from collector.market import MarketFetcher, SaturationGate
from recorder.config_loader import (
    OVERWRITE_TODAY,
    POLICIES,
    SKIP_IF_PRESENT,
    ConfigError,
    RealmTarget,
    RecorderConfig,
    load_config,
)
from recorder.notifier import send_failure_alert
from storage.history import HistoryStore

SAVED = "saved"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True)
class RealmOutcome:
    realm_id: int
    path: Path
    status: str
    detail: str = ""


@dataclass
class RunReport:
    outcomes: List[RealmOutcome] = field(default_factory=list)

    @property
    def failures(self) -> List[RealmOutcome]:
        return [o for o in self.outcomes if o.status == FAILED]

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        counts = {SAVED: 0, SKIPPED: 0, FAILED: 0}
        for o in self.outcomes:
            counts[o.status] += 1
        return f"saved={counts[SAVED]} skipped={counts[SKIPPED]} failed={counts[FAILED]}"


class RunController:
    """
    One pass over the configured realms: gate -> persist per realm.

    Realms run concurrently. Realms that share a history file (nested
    layout) run one after another so the file only ever has one writer.
    A failing realm is logged and reported, the others still finish.
    """

    def __init__(self, gate: SaturationGate, store: HistoryStore, policy: str = OVERWRITE_TODAY,
                 logger: Optional[logging.Logger] = None):
        if policy not in POLICIES:
            raise ValueError(f"Unsupported persistence policy: {policy!r}")
        self.gate = gate
        self.store = store
        self.policy = policy
        self.logger = logger or logging.getLogger("RunController")

    async def run_realm(self, target: RealmTarget) -> RealmOutcome:
        realm_id = target.realm_id
        self.logger.info(f"Processing realm {realm_id} -> {target.path}")
        try:
            if self.policy == SKIP_IF_PRESENT:
                today = self.store.today_key()
                if self.store.has_entry(target.path, realm_id, today):
                    self.logger.info(f"Realm {realm_id} already recorded for {today}, skipping fetch")
                    return RealmOutcome(realm_id, target.path, SKIPPED, f"{today} already present")

            data = await self.gate.ensure_ready(realm_id)
            date_key = self.store.today_key()
            if not self.store.persist(target.path, realm_id, date_key, data):
                return RealmOutcome(realm_id, target.path, FAILED, "persist failed")
        except Exception as e:
            self.logger.error(f"Error processing realm {realm_id}: {e}")
            return RealmOutcome(realm_id, target.path, FAILED, str(e) or type(e).__name__)

        self.logger.info(f"Realm {realm_id} saved under {date_key}")
        return RealmOutcome(realm_id, target.path, SAVED, date_key)

    async def _run_sequential(self, targets: List[RealmTarget]) -> List[RealmOutcome]:
        return [await self.run_realm(t) for t in targets]

    async def run_once(self, targets: Sequence[RealmTarget]) -> RunReport:
        groups: Dict[Path, List[RealmTarget]] = {}
        for t in targets:
            groups.setdefault(Path(t.path), []).append(t)

        results = await asyncio.gather(*(self._run_sequential(g) for g in groups.values()))
        by_target = {}
        for group, outcomes in zip(groups.values(), results):
            for t, outcome in zip(group, outcomes):
                by_target[id(t)] = outcome

        report = RunReport([by_target[id(t)] for t in targets])
        self.logger.info(f"All realms processed: {report.summary()}")
        return report


def build_controller(config: RecorderConfig, session=None) -> RunController:
    fetcher = MarketFetcher(
        base_url=config.api_base,
        timeout_seconds=config.timeout_seconds,
        retry_delay_seconds=config.retry_delay_seconds,
        id_field=config.id_field,
        value_field=config.value_field,
        drop_non_positive=config.drop_non_positive,
        session=session,
    )
    gate = SaturationGate(
        fetcher,
        sentinel_id=config.sentinel_id,
        max_retries=config.max_retries,
        poll_interval_seconds=config.poll_interval_seconds,
        max_attempts=config.gate_max_attempts,
        max_duration_seconds=config.gate_max_duration_seconds,
    )
    store = HistoryStore(
        timezone=config.timezone,
        date_format=config.date_format,
        retention_days=config.retention_days,
        nest_by_realm=config.nest_by_realm,
    )
    return RunController(gate, store, policy=config.policy)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Record today's market saturation for every configured realm")
    parser.add_argument("--config", default=None, help="Path to config.json (default: $SATURATION_CONFIG or ./config.json)")
    parser.add_argument("--policy", choices=POLICIES, default=None, help="Override the persistence policy")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config, policy=args.policy)
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        logging.getLogger("SaturationRecorder").error(f"Bad configuration: {e}")
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger("SaturationRecorder")

    controller = build_controller(config)
    logger.info(f"Starting run for realms {[t.realm_id for t in config.realms]} (policy={controller.policy})")

    report = asyncio.run(controller.run_once(config.realms))
    if not report.ok:
        send_failure_alert(report, config.alert_webhook_url, config.alert_platform)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
