from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

import recorder.main as recorder_main
from collector.market import SaturationGate
from recorder.config_loader import RealmTarget
from recorder.main import FAILED, SAVED, SKIPPED, RunController
from storage.history import HistoryStore, read_history, write_history
from fakes import FakeFetcher

TODAY = "2025/01/01"


def _store(nest_by_realm: bool = False) -> HistoryStore:
    store = HistoryStore(nest_by_realm=nest_by_realm)
    store.today_key = lambda now=None: TODAY
    return store


def _controller(fetcher: FakeFetcher, store: HistoryStore, policy: str = "overwrite-today") -> RunController:
    gate = SaturationGate(fetcher, poll_interval_seconds=0, max_attempts=2)
    return RunController(gate, store, policy=policy)


def test_run_once_saves_every_realm(tmp_path: Path) -> None:
    fetcher = FakeFetcher({0: [{"3": 0}, {"3": 42, "5": 0}], 1: [{"3": 7}]})
    targets = [RealmTarget(0, tmp_path / "R1.json"), RealmTarget(1, tmp_path / "R2.json")]

    report = asyncio.run(_controller(fetcher, _store()).run_once(targets))

    assert report.ok
    assert [o.status for o in report.outcomes] == [SAVED, SAVED]
    assert read_history(tmp_path / "R1.json") == {TODAY: {"3": 42, "5": 0}}
    assert read_history(tmp_path / "R2.json") == {TODAY: {"3": 7}}


def test_one_failing_realm_does_not_stop_the_others(tmp_path: Path) -> None:
    r2 = tmp_path / "R2.json"
    write_history(r2, {"2024/12/31": {"3": 1}})
    before = r2.read_text(encoding="utf-8")
    fetcher = FakeFetcher({0: [{"3": 12}], 1: [{}]})
    targets = [RealmTarget(0, tmp_path / "R1.json"), RealmTarget(1, r2)]

    report = asyncio.run(_controller(fetcher, _store()).run_once(targets))

    assert not report.ok
    assert [o.realm_id for o in report.failures] == [1]
    assert report.outcomes[0].status == SAVED
    assert read_history(tmp_path / "R1.json") == {TODAY: {"3": 12}}
    assert r2.read_text(encoding="utf-8") == before
    assert report.summary() == "saved=1 skipped=0 failed=1"


def test_corrupt_history_is_reported_as_failure(tmp_path: Path) -> None:
    r1 = tmp_path / "R1.json"
    r1.write_text("not json", encoding="utf-8")
    fetcher = FakeFetcher({0: [{"3": 12}]})

    report = asyncio.run(_controller(fetcher, _store()).run_once([RealmTarget(0, r1)]))

    assert report.outcomes[0].status == FAILED
    assert r1.read_text(encoding="utf-8") == "not json"


def test_skip_if_present_does_not_fetch(tmp_path: Path) -> None:
    path = tmp_path / "saturation.json"
    write_history(path, {TODAY: {"0": {"3": 5}}})
    fetcher = FakeFetcher({0: [{"3": 99}], 1: [{"3": 8}]})
    targets = [RealmTarget(0, path), RealmTarget(1, path)]

    report = asyncio.run(_controller(fetcher, _store(nest_by_realm=True), "skip-if-present").run_once(targets))

    assert [o.status for o in report.outcomes] == [SKIPPED, SAVED]
    assert [call[0] for call in fetcher.calls] == [1]
    assert read_history(path) == {TODAY: {"0": {"3": 5}, "1": {"3": 8}}}


def test_overwrite_today_refreshes_existing_entry(tmp_path: Path) -> None:
    path = tmp_path / "R1.json"
    write_history(path, {TODAY: {"3": 5, "4": 1}})
    fetcher = FakeFetcher({0: [{"3": 6}]})

    asyncio.run(_controller(fetcher, _store()).run_once([RealmTarget(0, path)]))

    assert read_history(path) == {TODAY: {"3": 6}}


def test_realms_sharing_a_file_are_all_kept(tmp_path: Path) -> None:
    path = tmp_path / "saturation.json"
    fetcher = FakeFetcher({0: [{"3": 1}], 1: [{"3": 2}], 2: [{"3": 3}]})
    targets = [RealmTarget(r, path) for r in (0, 1, 2)]

    report = asyncio.run(_controller(fetcher, _store(nest_by_realm=True)).run_once(targets))

    assert report.ok
    assert read_history(path) == {TODAY: {"0": {"3": 1}, "1": {"3": 2}, "2": {"3": 3}}}


def test_unknown_policy_is_rejected() -> None:
    with pytest.raises(ValueError):
        RunController(None, HistoryStore(), policy="append")


def _write_config(tmp_path: Path) -> Path:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({"realms": [{"realm_id": 0, "path": "data/R1.json"}, {"realm_id": 1, "path": "data/R2.json"}]}),
        encoding="utf-8",
    )
    return config_path


def _patch_controller(monkeypatch: pytest.MonkeyPatch, fetcher: FakeFetcher) -> list:
    alerts = []

    def build(config, session=None):
        store = HistoryStore(timezone=config.timezone, nest_by_realm=config.nest_by_realm)
        return _controller(fetcher, store, config.policy)

    monkeypatch.setattr(recorder_main, "build_controller", build)
    monkeypatch.setattr(recorder_main, "send_failure_alert", lambda report, *args: alerts.append(report))
    return alerts


def test_main_exits_zero_when_all_realms_saved(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = _write_config(tmp_path)
    alerts = _patch_controller(monkeypatch, FakeFetcher({0: [{"3": 1}], 1: [{"3": 2}]}))

    assert recorder_main.main(["--config", str(config_path)]) == 0
    assert (tmp_path / "data" / "R1.json").exists()
    assert (tmp_path / "data" / "R2.json").exists()
    assert alerts == []


def test_main_exits_non_zero_and_alerts_on_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = _write_config(tmp_path)
    alerts = _patch_controller(monkeypatch, FakeFetcher({0: [{"3": 1}], 1: [{"3": 0}]}))

    assert recorder_main.main(["--config", str(config_path)]) == 1
    assert len(alerts) == 1
    assert [o.realm_id for o in alerts[0].failures] == [1]
    assert not (tmp_path / "data" / "R2.json").exists()


def test_main_rejects_bad_config(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text('{"history": {"policy": "sometimes"}}', encoding="utf-8")

    assert recorder_main.main(["--config", str(config_path)]) == 2


def test_main_policy_flag_switches_to_nested_layout(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.json"
    shared = [{"realm_id": 0, "path": "data/saturation.json"}, {"realm_id": 1, "path": "data/saturation.json"}]
    config_path.write_text(json.dumps({"realms": shared}), encoding="utf-8")
    built = []

    def build(config, session=None):
        built.append(config)
        store = HistoryStore(timezone=config.timezone, nest_by_realm=config.nest_by_realm)
        return _controller(FakeFetcher({0: [{"3": 1}], 1: [{"3": 2}]}), store, config.policy)

    monkeypatch.setattr(recorder_main, "build_controller", build)

    assert recorder_main.main(["--config", str(config_path), "--policy", "skip-if-present"]) == 0
    assert built[0].policy == "skip-if-present"
    assert built[0].nest_by_realm is True
    history = read_history(tmp_path / "data" / "saturation.json")
    assert [sorted(entry) for entry in history.values()] == [["0", "1"]]


def test_main_policy_flag_is_validated(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    shared = [{"realm_id": 0, "path": "saturation.json"}, {"realm_id": 1, "path": "saturation.json"}]
    config_path.write_text(
        json.dumps({"realms": shared, "history": {"nest_by_realm": False}}), encoding="utf-8"
    )

    assert recorder_main.main(["--config", str(config_path), "--policy", "skip-if-present"]) == 2
