from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import pandas as pd

# Shop category -> resource ids, as charted on the dashboard.
CATEGORIES: Dict[str, List[int]] = {
    "fresh_store": [3, 4, 5, 7, 8, 9, 67, 119, 122, 123, 124, 125, 126, 127, 140, 144],
    "hardware_store": [102, 103, 108, 109, 110],
    "gas_station": [11, 12],
    "fashion_store": [60, 61, 62, 63, 64, 65, 70, 71],
    "electronics_store": [24, 25, 26, 27, 28, 98],
    "car_dealership": [53, 54, 55, 56, 57],
    "aerospace": [91, 94, 95, 96, 97, 99],
}

RESOURCE_NAMES: Dict[int, str] = {
    3: "Apples", 4: "Oranges", 5: "Grapes", 7: "Steak", 8: "Sausages", 9: "Eggs",
    11: "Petrol", 12: "Diesel",
    24: "Smartphones", 25: "Tablets", 26: "Laptops", 27: "Monitors", 28: "Televisions",
    53: "Economy e-car", 54: "Luxury e-car", 55: "Economy car", 56: "Luxury car", 57: "Truck",
    60: "Underwear", 61: "Gloves", 62: "Dress", 63: "Stiletto heels", 64: "Handbags", 65: "Sneakers",
    67: "Xmas crackers", 70: "Luxury watch", 71: "Necklace", 98: "Quadcopter",
    102: "Bricks", 103: "Cement", 108: "Planks", 109: "Windows", 110: "Tools",
    119: "Ground coffee", 120: "Vegetables", 121: "Bread", 122: "Cheese", 123: "Apple pie",
    124: "Orange juice", 125: "Apple cider", 126: "Ginger beer", 127: "Frozen pizza", 128: "Pasta",
    140: "Chocolate", 144: "Xmas ornament",
}


def resource_name(resource_id) -> str:
    try:
        return RESOURCE_NAMES.get(int(resource_id), str(resource_id))
    except (TypeError, ValueError):
        return str(resource_id)


def _column_order(col: str):
    return (0, int(col), col) if col.isdigit() else (1, 0, col)


def recent_frame(
    history: Dict[str, Any],
    days: int = 7,
    today: Optional[date] = None,
    realm_id=None,
    date_format: str = "%Y/%m/%d",
    timezone: str = "Asia/Shanghai",
) -> pd.DataFrame:
    """
    Rows: date keys from the last `days` days (oldest first).
    Columns: resource ids as strings. Missing values are 0, matching the chart.

    realm_id picks the realm sub-entry of a nested history file.
    """
    if today is None:
        today = datetime.now(ZoneInfo(timezone)).date()
    start = today - timedelta(days=days - 1)

    rows = {}
    for key, entry in history.items():
        try:
            day = datetime.strptime(key, date_format).date()
        except ValueError:
            continue
        if day < start or day > today:
            continue
        if realm_id is not None:
            entry = entry.get(str(realm_id), {}) if isinstance(entry, dict) else {}
        if isinstance(entry, dict):
            rows[key] = entry

    if not rows:
        return pd.DataFrame()

    df = pd.DataFrame.from_dict(rows, orient="index").fillna(0)
    df = df[sorted(df.columns.astype(str), key=_column_order)]
    return df.sort_index()


def category_frames(frame: pd.DataFrame, categories: Dict[str, List[int]] = None) -> Dict[str, pd.DataFrame]:
    """Split a recent_frame into one frame per shop category, columns named for display."""
    categories = categories or CATEGORIES
    out: Dict[str, pd.DataFrame] = {}
    for category, ids in categories.items():
        cols = [str(i) for i in ids]
        sub = frame.reindex(columns=cols, fill_value=0)
        out[category] = sub.rename(columns={c: resource_name(c) for c in cols})
    return out


def frames_to_payload(frames: Dict[str, pd.DataFrame]) -> Dict[str, Any]:
    payload = {}
    for category, df in frames.items():
        payload[category] = {
            "dates": [str(i) for i in df.index],
            "series": {name: [float(v) for v in df[name].tolist()] for name in df.columns},
        }
    return payload
