import json
import logging
from dataclasses import asdict, dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union

import pandas as pd
from pvlib import location

import regions as region_data
from spacing_engine import (
    DailyProfile,
    GeoLocation,
    Margin,
    MARGIN_MODES,
    PanelGeometry,
    ShadowStatus,
    daily_profile,
    evaluate_instant,
    hour_label,
    margin_from_mode,
)

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path("pv_row_spacing_settings.json")
GL_MODES = ("direct", "panel")

# Inclusive (min, max) per numeric field; the dashboard widgets use the same limits
SETTINGS_BOUNDS = {
    "panel_azimuth": (0.0, 360.0),
    "manual_gl_height": (0.0, 20.0),
    "panel_length_mm": (0.0, 5000.0),
    "panel_width_mm": (0.0, 5000.0),
    "vertical_count": (0, 10),
    "tilt_deg": (0.0, 90.0),
    "bottom_clearance_mm": (0.0, 5000.0),
    "margin_factor": (0.0, 5.0),
    "margin_fixed_m": (0.0, 20.0),
}

# The simplified model is pinned to this date for the pvlib comparison
SOLSTICE_MONTH, SOLSTICE_DAY = 12, 21
JST = "Etc/GMT-9"  # fixed UTC+9, the 135E reference meridian


# --- CONFIGURATION CLASS ---
@dataclass
class PlannerSettings:
    """Snapshot of the user's inputs. Passed by value into every evaluation."""
    region_id: str = region_data.DEFAULT_REGION_ID
    time: str = "12:00"
    panel_azimuth: float = 180.0  # 180 = South
    # GL height: 'direct' uses manual_gl_height, 'panel' derives it from the panel dimensions
    gl_mode: str = "direct"
    manual_gl_height: float = 1.5
    panel_length_mm: float = 2278.0
    panel_width_mm: float = 1134.0
    vertical_count: int = 2
    tilt_deg: float = 20.0
    bottom_clearance_mm: float = 600.0
    margin_mode: str = "factor"
    margin_factor: float = 1.0
    margin_fixed_m: float = 0.5

    def panel_geometry(self) -> PanelGeometry:
        return PanelGeometry(
            panel_length_mm=self.panel_length_mm,
            vertical_count=self.vertical_count,
            tilt_deg=self.tilt_deg,
            bottom_clearance_mm=self.bottom_clearance_mm,
            panel_width_mm=self.panel_width_mm,
        )

    def top_height_m(self) -> float:
        if self.gl_mode == "panel":
            return self.panel_geometry().top_gl_height_m()
        return float(self.manual_gl_height)

    def margin(self) -> Margin:
        value = self.margin_factor if self.margin_mode == "factor" else self.margin_fixed_m
        return margin_from_mode(self.margin_mode, value)


def load_settings(path: Union[str, Path] = DEFAULT_SETTINGS_PATH,
                  regions: Optional[pd.DataFrame] = None) -> PlannerSettings:
    """
    Reads a saved settings snapshot. A missing or unreadable file yields the defaults;
    fields that fail validation fall back to their default individually.
    """
    path = Path(path)
    defaults = PlannerSettings()
    if not path.exists():
        return defaults

    try:
        with open(path, encoding="utf-8") as f:
            saved = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Failed to parse saved settings %s: %s", path, e)
        return defaults
    if not isinstance(saved, dict):
        logger.warning("Ignoring saved settings %s: expected a JSON object", path)
        return defaults

    values = {}
    for f in fields(PlannerSettings):
        if f.name not in saved:
            continue
        default = getattr(defaults, f.name)
        try:
            value = type(default)(saved[f.name])
        except (TypeError, ValueError, OverflowError):
            logger.warning("Ignoring saved %s=%r", f.name, saved[f.name])
            continue
        if f.name in SETTINGS_BOUNDS:
            lo, hi = SETTINGS_BOUNDS[f.name]
            # NaN fails the comparison too
            if not lo <= value <= hi:
                logger.warning("Saved %s=%r outside [%s, %s], using %r", f.name, value, lo, hi, default)
                continue
        values[f.name] = value

    settings = PlannerSettings(**values)

    if settings.gl_mode not in GL_MODES:
        logger.warning("Unknown GL mode %r, using %r", settings.gl_mode, defaults.gl_mode)
        settings.gl_mode = defaults.gl_mode
    if settings.margin_mode not in MARGIN_MODES:
        logger.warning("Unknown margin mode %r, using %r", settings.margin_mode, defaults.margin_mode)
        settings.margin_mode = defaults.margin_mode
    if regions is not None and settings.region_id not in regions.index:
        logger.warning("Unknown region %r, using %r", settings.region_id, defaults.region_id)
        settings.region_id = defaults.region_id
    try:
        region_data.hour_from_label(settings.time)
    except ValueError:
        logger.warning("Saved time %r is not a design hour, using %r", settings.time, defaults.time)
        settings.time = defaults.time

    return settings


def save_settings(settings: PlannerSettings, path: Union[str, Path] = DEFAULT_SETTINGS_PATH) -> Path:
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(asdict(settings), f, indent=4, ensure_ascii=False)
    return path


# --- RESULT RECORDS ---
@dataclass(frozen=True)
class PlannerResult:
    region_id: str
    region_name: str
    time: str
    altitude_deg: float
    azimuth_deg: float
    panel_azimuth_deg: float
    h_top: float
    l_basic: Optional[float]
    l_row: float
    is_backside: bool
    recommended_spacing: float
    azimuth_diff_deg: float
    margin_detail: str
    status: ShadowStatus

    def to_dict(self) -> dict:
        d = asdict(self)
        d['status'] = self.status.value
        return d


class SpacingVerdict(Enum):
    OK = "ok"
    SHORT = "short"
    NO_CONSTRAINT = "no_constraint"
    INVALID_GEOMETRY = "invalid_geometry"


@dataclass(frozen=True)
class SpacingCheck:
    verdict: SpacingVerdict
    shortfall_m: float = 0.0


def check_existing_spacing(existing_m: float, result: PlannerResult) -> SpacingCheck:
    """Compares a proposed row pitch against the recommended one."""
    if result.status is ShadowStatus.INVALID_GEOMETRY:
        return SpacingCheck(SpacingVerdict.INVALID_GEOMETRY)
    if result.is_backside:
        return SpacingCheck(SpacingVerdict.NO_CONSTRAINT)
    if existing_m >= result.recommended_spacing:
        return SpacingCheck(SpacingVerdict.OK)
    return SpacingCheck(SpacingVerdict.SHORT, shortfall_m=result.recommended_spacing - existing_m)


def reference_solar_position(loc: GeoLocation, hour: float, year: int = 2024) -> Tuple[float, float]:
    """
    pvlib (SPA) sun position on the winter solstice at the same JST hour.
    Returns (apparent elevation, azimuth) in degrees, for comparison with the simplified model.
    """
    site = location.Location(loc.latitude, loc.longitude, tz=JST)
    minutes = int(round(hour * 60))
    t = pd.Timestamp(year=year, month=SOLSTICE_MONTH, day=SOLSTICE_DAY,
                     hour=minutes // 60, minute=minutes % 60, tz=JST)
    solpos = site.get_solarposition(pd.DatetimeIndex([t]))
    return float(solpos['apparent_elevation'].iloc[0]), float(solpos['azimuth'].iloc[0])


# --- PLANNER ---
class RowSpacingPlanner:
    def __init__(self, settings: PlannerSettings, regions: pd.DataFrame):
        self.settings = settings
        self.region_id = settings.region_id
        self.region_name = region_data.region_name(regions, settings.region_id)
        self.location = region_data.get_location(regions, settings.region_id)
        if self.location.is_polar:
            raise ValueError(f"Polar latitude {self.location.latitude} is not supported")
        self.margin = settings.margin()
        self.h_top = settings.top_height_m()
        self.panel_azimuth = float(settings.panel_azimuth)

    def evaluate(self, time: Optional[str] = None) -> PlannerResult:
        """Single-instant calculation at a design hour label (defaults to settings.time)."""
        label = time if time is not None else self.settings.time
        hour = region_data.hour_from_label(label)

        pos, shadow, spacing = evaluate_instant(self.location, hour, self.h_top,
                                                self.panel_azimuth, self.margin)
        return PlannerResult(
            region_id=self.region_id,
            region_name=self.region_name,
            time=hour_label(hour),
            altitude_deg=pos.altitude_deg,
            azimuth_deg=pos.azimuth_deg,
            panel_azimuth_deg=self.panel_azimuth,
            h_top=self.h_top,
            l_basic=shadow.l_basic,
            l_row=shadow.l_row,
            is_backside=shadow.is_backside,
            recommended_spacing=spacing.recommended_m,
            azimuth_diff_deg=shadow.azimuth_diff_deg,
            margin_detail=self.margin.describe(),
            status=shadow.status,
        )

    def run_day(self) -> DailyProfile:
        profile = daily_profile(self.location, self.h_top, self.panel_azimuth, self.margin)
        if profile.governing is not None:
            logger.info("%s: governing hour %s, spacing %.2f m",
                        self.region_id, profile.governing.label, profile.governing.spacing)
        else:
            logger.info("%s: no shading constraint between %s and %s", self.region_id,
                        profile.points[0].label, profile.points[-1].label)
        return profile

    def reference_position(self, time: Optional[str] = None, year: int = 2024) -> Tuple[float, float]:
        label = time if time is not None else self.settings.time
        return reference_solar_position(self.location, region_data.hour_from_label(label), year)

    def save_results(self, result: PlannerResult, profile: DailyProfile, filename_base: str):
        # 1. Save Data Table (CSV)
        profile.to_frame().to_csv(f"{filename_base}.csv", index=False)

        # 2. Save Configuration + Result (JSON)
        output = {
            "settings": asdict(self.settings),
            "location": {
                "region_id": self.region_id,
                "lat": self.location.latitude,
                "lon": self.location.longitude,
            },
            "result": result.to_dict(),
            "governing": None if profile.governing is None else {
                "time": profile.governing.label,
                "spacing": profile.governing.spacing,
            },
        }
        with open(f"{filename_base}.json", "w", encoding="utf-8") as f:
            json.dump(output, f, indent=4, ensure_ascii=False)
        logger.info("Saved %s.csv and %s.json", filename_base, filename_base)
