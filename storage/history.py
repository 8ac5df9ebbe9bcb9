import json
import logging
import shutil
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Union
from zoneinfo import ZoneInfo

PathLike = Union[str, Path]


class HistoryCorruptError(ValueError):
    """Raised when a history file exists but does not hold a JSON object."""


def read_history(path: PathLike) -> Dict[str, Any]:
    """Load a history file. A missing file is an empty history."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    try:
        history = json.loads(raw)
    except json.JSONDecodeError as e:
        raise HistoryCorruptError(f"{path} is not valid JSON: {e}") from e
    if not isinstance(history, dict):
        raise HistoryCorruptError(f"{path} holds {type(history).__name__}, expected an object")
    return history


def write_history(path: PathLike, history: Dict[str, Any]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    # Compact, like the files the dashboard already reads.
    try:
        tmp.write_text(json.dumps(history, ensure_ascii=False, separators=(",", ":")), encoding="utf-8")
        tmp.replace(path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


class HistoryStore:
    """
    Per-realm saturation history kept in one JSON file per realm.

    Layout is {date_key: {resource_id: saturation}}, or with nest_by_realm
    {date_key: {realm_id: {resource_id: saturation}}}. Date keys are
    zero-padded so string order equals date order, which is what pruning
    relies on. Only one writer per file at a time is supported.
    """

    def __init__(
        self,
        timezone: str = "Asia/Shanghai",
        date_format: str = "%Y/%m/%d",
        retention_days: int = 365,
        nest_by_realm: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self.tz = ZoneInfo(timezone)
        self.date_format = date_format
        self.retention_days = int(retention_days)
        self.nest_by_realm = nest_by_realm
        self.logger = logger or logging.getLogger("HistoryStore")

    def format_day(self, day: date) -> str:
        return day.strftime(self.date_format)

    def parse_day(self, date_key: str) -> date:
        return datetime.strptime(date_key, self.date_format).date()

    def today_key(self, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(self.tz)
        if now.tzinfo is None:
            now = now.replace(tzinfo=self.tz)
        return self.format_day(now.astimezone(self.tz).date())

    def cutoff_key(self, today: Optional[str] = None) -> str:
        today_day = self.parse_day(today or self.today_key())
        return self.format_day(today_day - timedelta(days=self.retention_days))

    def load(self, path: PathLike) -> Dict[str, Any]:
        return read_history(path)

    def has_entry(self, path: PathLike, realm_id, date_key: str) -> bool:
        entry = self.load(path).get(date_key)
        if entry is None:
            return False
        if self.nest_by_realm:
            return isinstance(entry, dict) and str(realm_id) in entry
        return True

    def persist(self, path: PathLike, realm_id, date_key: str, data: Dict[str, float]) -> bool:
        """
        Store data as the date_key entry, back up the previous file, prune
        and rewrite. Returns False (after logging) instead of raising when
        the file is corrupt or the filesystem refuses.
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            history = self.load(path)
        except HistoryCorruptError as e:
            self.logger.error(f"Refusing to overwrite corrupt history for realm {realm_id}: {e}")
            return False
        except OSError as e:
            self.logger.error(f"Cannot read history {path} for realm {realm_id}: {e}")
            return False

        if self.nest_by_realm:
            entry = history.get(date_key)
            if not isinstance(entry, dict):
                entry = {}
            entry[str(realm_id)] = dict(data)
            history[date_key] = entry
        else:
            history[date_key] = dict(data)

        removed = self._prune_keys(history, self.cutoff_key(date_key))
        self._backup(path)

        try:
            write_history(path, history)
        except OSError as e:
            self.logger.error(f"Failed to write history {path} for realm {realm_id}: {e}")
            return False

        self.logger.info(
            f"Saved {len(data)} values for realm {realm_id} under {date_key} to {path} (pruned {removed})"
        )
        return True

    def prune(self, path: PathLike, cutoff_key: str) -> int:
        """Drop every date key strictly older than cutoff_key. Returns how many went."""
        path = Path(path)
        if not path.exists():
            self.logger.warning(f"History {path} does not exist, nothing to prune")
            return 0
        history = self.load(path)
        removed = self._prune_keys(history, cutoff_key)
        if removed:
            write_history(path, history)
            self.logger.info(f"Pruned {removed} entries older than {cutoff_key} from {path}")
        return removed

    def _prune_keys(self, history: Dict[str, Any], cutoff_key: str) -> int:
        stale = [key for key in history if key < cutoff_key]
        for key in stale:
            del history[key]
        return len(stale)

    def _backup(self, path: Path) -> None:
        backup = path.with_name(path.name + ".bak")
        try:
            shutil.copyfile(path, backup)
            self.logger.info(f"Backed up {path} to {backup}")
        except FileNotFoundError:
            self.logger.warning(f"No existing {path} to back up, skipping")
        except OSError as e:
            self.logger.error(f"Backup of {path} failed: {e}")
