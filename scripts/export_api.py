from pathlib import Path

from fastapi import FastAPI, HTTPException

from analyst.report import category_frames, frames_to_payload, recent_frame
from recorder.config_loader import ConfigError, RealmTarget, RecorderConfig, load_config
from storage.history import HistoryCorruptError, read_history


app = FastAPI(title="Saturation History Export")


def _config() -> RecorderConfig:
    # Re-read on every request so edits to config.json need no restart.
    try:
        return load_config()
    except ConfigError as e:
        raise HTTPException(status_code=500, detail=f"Bad configuration: {e}")


def _target(config: RecorderConfig, realm_id: int) -> RealmTarget:
    for t in config.realms:
        if t.realm_id == realm_id:
            return t
    raise HTTPException(status_code=404, detail=f"Unknown realm: {realm_id}")


def _history(path: Path) -> dict:
    try:
        return read_history(path)
    except HistoryCorruptError as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/health")
def health():
    config = _config()
    realms = []
    for t in config.realms:
        p = Path(t.path)
        realms.append({
            "realm_id": t.realm_id,
            "file": str(p),
            "exists": p.exists(),
            "size": p.stat().st_size if p.exists() else 0,
        })
    return {"ok": True, "realms": realms}


@app.get("/history/{realm_id}")
def history(realm_id: int):
    config = _config()
    return _history(_target(config, realm_id).path)


@app.get("/recent/{realm_id}")
def recent(realm_id: int, days: int = 7):
    if days <= 0 or days > 366:
        raise HTTPException(status_code=400, detail="days must be between 1 and 366")
    config = _config()
    target = _target(config, realm_id)
    frame = recent_frame(
        _history(target.path),
        days=days,
        realm_id=realm_id if config.nest_by_realm else None,
        date_format=config.date_format,
        timezone=config.timezone,
    )
    return {"realm_id": realm_id, "days": days, "categories": frames_to_payload(category_frames(frame))}
