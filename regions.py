"""
Region dataset: prefecture id -> (name, latitude, longitude).

The dataset is a JSON file of the form {"regions": [{"id", "nameJa", "nameEn", "lat", "lon"}, ...]}.
Loading it is the only I/O step needed before the spacing engine can run.
"""
import json
import logging
from pathlib import Path
from typing import Union

import pandas as pd

from spacing_engine import DESIGN_HOURS, GeoLocation, hour_label, solar_position

logger = logging.getLogger(__name__)

DEFAULT_REGIONS_PATH = Path(__file__).parent / "pv_regions_data" / "regions.json"
DEFAULT_REGION_ID = "tokyo"
REQUIRED_COLUMNS = ["id", "nameJa", "lat", "lon"]

DESIGN_SET_LABEL = "冬至（12/21 相当）"


class RegionDataError(Exception):
    """Region dataset is missing or malformed."""


class RegionNotFoundError(KeyError):
    pass


def load_regions(path: Union[str, Path] = DEFAULT_REGIONS_PATH) -> pd.DataFrame:
    """Loads the dataset into a DataFrame indexed by region id."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError as e:
        raise RegionDataError(f"Region dataset not found: {path}") from e
    except json.JSONDecodeError as e:
        raise RegionDataError(f"Region dataset is not valid JSON: {path} ({e})") from e

    if not isinstance(raw, dict) or not isinstance(raw.get("regions"), list):
        raise RegionDataError(f"Region dataset has no 'regions' list: {path}")

    df = pd.DataFrame(raw["regions"])
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise RegionDataError(f"Region dataset is missing columns {missing}: {path}")
    if df.empty:
        raise RegionDataError(f"Region dataset is empty: {path}")
    if df["id"].duplicated().any():
        dupes = sorted(df.loc[df["id"].duplicated(), "id"].unique())
        raise RegionDataError(f"Duplicate region ids: {dupes}")

    if "nameEn" not in df.columns:
        df["nameEn"] = df["id"].str.title()

    try:
        df["lat"] = df["lat"].astype(float)
        df["lon"] = df["lon"].astype(float)
    except (TypeError, ValueError) as e:
        raise RegionDataError(f"Non-numeric coordinates in {path}: {e}") from e

    missing_coords = df[["lat", "lon"]].isna().any(axis=1)
    if missing_coords.any():
        raise RegionDataError(f"Missing coordinates for {list(df.loc[missing_coords, 'id'])}")
    bad = df[(df["lat"].abs() > 90) | (df["lon"].abs() > 180)]
    if not bad.empty:
        raise RegionDataError(f"Coordinates out of range for {list(bad['id'])}")

    df = df.set_index("id")
    logger.info("Loaded %d regions from %s", len(df), path)
    return df


def get_location(regions: pd.DataFrame, region_id: str) -> GeoLocation:
    if region_id not in regions.index:
        raise RegionNotFoundError(region_id)
    row = regions.loc[region_id]
    return GeoLocation(latitude=float(row["lat"]), longitude=float(row["lon"]))


def region_name(regions: pd.DataFrame, region_id: str, lang: str = "ja") -> str:
    if region_id not in regions.index:
        raise RegionNotFoundError(region_id)
    col = "nameJa" if lang == "ja" else "nameEn"
    return str(regions.loc[region_id, col])


def solar_design_set(regions: pd.DataFrame, region_id: str) -> pd.DataFrame:
    """Winter-solstice design hours for one region, rounded for display (0.1 deg)."""
    loc = get_location(regions, region_id)
    rows = []
    for h in DESIGN_HOURS:
        pos = solar_position(loc.latitude, loc.longitude, h)
        rows.append({
            'time': hour_label(h),
            'hour': h,
            'altitudeDeg': round(pos.altitude_deg, 1),
            'azimuthDeg': round(pos.azimuth_deg, 1),
        })
    return pd.DataFrame(rows)


def hour_from_label(label: str) -> int:
    """'09:00' -> 9. Only whole design hours are accepted."""
    try:
        h_str, m_str = label.split(":")
        hour, minute = int(h_str), int(m_str)
    except (AttributeError, ValueError) as e:
        raise ValueError(f"Invalid time label {label!r}") from e
    if minute != 0 or hour not in DESIGN_HOURS:
        raise ValueError(f"{label!r} is not one of the design hours "
                         f"{[hour_label(h) for h in DESIGN_HOURS]}")
    return hour
