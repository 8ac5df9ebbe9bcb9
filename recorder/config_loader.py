import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

LOCAL_CONFIG_PATH = Path("config.json")

OVERWRITE_TODAY = "overwrite-today"
SKIP_IF_PRESENT = "skip-if-present"
POLICIES = (OVERWRITE_TODAY, SKIP_IF_PRESENT)

DEFAULT_REALMS = (
    {"realm_id": 0, "path": "data/R1_saturation.json"},
    {"realm_id": 1, "path": "data/R2_saturation.json"},
)


class ConfigError(ValueError):
    """Raised for an unreadable or inconsistent configuration."""


@dataclass(frozen=True)
class RealmTarget:
    realm_id: int
    path: Path


@dataclass(frozen=True)
class RecorderConfig:
    realms: Tuple[RealmTarget, ...]
    api_base: str = "https://www.simcompanies.com/api/v4"
    timeout_seconds: float = 5.0
    max_retries: int = 10
    retry_delay_seconds: float = 1.0
    id_field: str = "dbLetter"
    value_field: str = "saturation"
    drop_non_positive: bool = False
    sentinel_id: str = "3"
    poll_interval_seconds: float = 30.0
    gate_max_attempts: Optional[int] = 120
    gate_max_duration_seconds: Optional[float] = None
    timezone: str = "Asia/Shanghai"
    date_format: str = "%Y/%m/%d"
    retention_days: int = 365
    policy: str = OVERWRITE_TODAY
    nest_by_realm: bool = False
    log_level: str = "INFO"
    alert_webhook_url: str = ""
    alert_platform: str = "DISCORD"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


def _optional_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _optional_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _read_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        # Fallback defaults
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path} is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must hold a JSON object")
    return raw


def _realm_targets(entries, base_dir: Path) -> Tuple[RealmTarget, ...]:
    targets = []
    for entry in entries:
        try:
            realm_id = int(entry["realm_id"])
            path = Path(entry["path"])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"bad realm entry {entry!r}: {e}") from e
        if not path.is_absolute():
            path = base_dir / path
        targets.append(RealmTarget(realm_id=realm_id, path=path))
    return tuple(targets)


def load_config(path=None, policy: Optional[str] = None) -> RecorderConfig:
    """
    Read config.json (or $SATURATION_CONFIG), fall back to built-in defaults
    for anything missing, then apply environment overrides.

    Relative history paths are resolved against the config file's folder.
    An explicit policy (the CLI flag) wins over the file and the environment.
    """
    path = Path(path or os.getenv("SATURATION_CONFIG", str(LOCAL_CONFIG_PATH)))
    raw = _read_file(path)
    base_dir = path.parent if path.exists() else Path(".")

    fetch = raw.get("fetch", {})
    gate = raw.get("gate", {})
    history = raw.get("history", {})
    alerts = raw.get("alerts", {})

    realms = _realm_targets(raw.get("realms", DEFAULT_REALMS), base_dir)
    try:
        policy = policy or os.getenv("SATURATION_POLICY", history.get("policy", OVERWRITE_TODAY))
        nest_by_realm = history.get("nest_by_realm")
        if nest_by_realm is None:
            nest_by_realm = policy == SKIP_IF_PRESENT

        config = RecorderConfig(
            realms=realms,
            api_base=os.getenv("SATURATION_API_BASE", fetch.get("api_base", RecorderConfig.api_base)),
            timeout_seconds=float(fetch.get("timeout_seconds", 5.0)),
            max_retries=int(fetch.get("max_retries", 10)),
            retry_delay_seconds=float(fetch.get("retry_delay_seconds", 1.0)),
            id_field=str(fetch.get("id_field", "dbLetter")),
            value_field=str(fetch.get("value_field", "saturation")),
            drop_non_positive=_env_bool(
                "SATURATION_DROP_NON_POSITIVE", bool(fetch.get("drop_non_positive", False))
            ),
            sentinel_id=str(gate.get("sentinel_id", "3")),
            poll_interval_seconds=float(
                os.getenv("SATURATION_POLL_SECONDS", gate.get("poll_interval_seconds", 30.0))
            ),
            gate_max_attempts=_optional_int(
                os.getenv("SATURATION_GATE_MAX_ATTEMPTS", gate.get("max_attempts", 120))
            ),
            gate_max_duration_seconds=_optional_float(gate.get("max_duration_seconds")),
            timezone=os.getenv("SATURATION_TIMEZONE", history.get("timezone", "Asia/Shanghai")),
            date_format=str(history.get("date_format", "%Y/%m/%d")),
            retention_days=int(history.get("retention_days", 365)),
            policy=policy,
            nest_by_realm=bool(nest_by_realm),
            log_level=str(os.getenv("LOG_LEVEL", raw.get("log_level", "INFO"))).upper(),
            alert_webhook_url=os.getenv("ALERT_WEBHOOK_URL", alerts.get("webhook_url", "")),
            alert_platform=str(os.getenv("ALERT_PLATFORM", alerts.get("platform", "DISCORD"))).upper(),
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise ConfigError(f"invalid value in {path}: {e}") from e

    validate(config)
    return config


def validate(config: RecorderConfig) -> None:
    if config.policy not in POLICIES:
        raise ConfigError(f"policy must be one of {POLICIES}, got {config.policy!r}")
    if not config.realms:
        raise ConfigError("at least one realm is required")
    paths = [t.path for t in config.realms]
    if len(set(paths)) != len(paths) and not config.nest_by_realm:
        raise ConfigError("realms can only share a history file with nest_by_realm")
    if config.retention_days <= 0:
        raise ConfigError("retention_days must be > 0")
    if config.max_retries < 0:
        raise ConfigError("max_retries must be >= 0")
    if config.gate_max_attempts is not None and config.gate_max_attempts < 1:
        raise ConfigError("gate max_attempts must be >= 1")
