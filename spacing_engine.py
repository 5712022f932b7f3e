import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

# --- CONSTANTS ---
WINTER_SOLSTICE_DECLINATION = -23.44  # deg
EQUATION_OF_TIME_MIN = 0.0
REFERENCE_MERIDIAN = 135.0  # JST meridian, deg East
DESIGN_HOURS: Tuple[int, ...] = (9, 10, 11, 12, 13, 14, 15)

# cos(90 deg) evaluates to ~6e-17, so |dA| = 90 must still count as backside
COS_DELTA_TOLERANCE = 1e-9


def to_radians(deg):
    return np.radians(deg)


def to_degrees(rad):
    return np.degrees(rad)


def hour_label(hour: float) -> str:
    """09:00 style label for a (whole) hour."""
    minutes = int(round(hour * 60))
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


# --- DATA CLASSES ---
@dataclass(frozen=True)
class GeoLocation:
    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")

    @property
    def is_polar(self) -> bool:
        # cos(lat) == 0 makes the azimuth formula singular
        return abs(self.latitude) >= 90.0


@dataclass(frozen=True)
class SolarPosition:
    altitude_deg: float
    azimuth_deg: float  # North = 0, East = 90, South = 180, West = 270
    hour_angle_deg: float
    below_horizon: bool = False


@dataclass
class PanelGeometry:
    """
    Cross-section of one fixed-tilt row.
    Modules are stacked `vertical_count` high along the sloped edge.
    """
    panel_length_mm: float = 2278.0
    vertical_count: int = 2
    tilt_deg: float = 20.0
    bottom_clearance_mm: float = 600.0
    # Not used by the height calculation, kept for display
    panel_width_mm: float = 1134.0

    def top_gl_height_m(self) -> float:
        return top_gl_height(self.panel_length_mm, self.vertical_count,
                             self.tilt_deg, self.bottom_clearance_mm)


class ShadowStatus(Enum):
    VALID = "valid"
    NIGHT_NO_CONSTRAINT = "night_no_constraint"
    BACKSIDE_NO_CONSTRAINT = "backside_no_constraint"
    INVALID_GEOMETRY = "invalid_geometry"

    @property
    def constrains_spacing(self) -> bool:
        return self is ShadowStatus.VALID


@dataclass(frozen=True)
class ShadowResult:
    l_basic: Optional[float]  # None = sun on/below horizon, no finite shadow
    l_row: float
    is_backside: bool
    azimuth_diff_deg: float
    status: ShadowStatus

    @property
    def is_unbounded(self) -> bool:
        return self.l_basic is None


@dataclass(frozen=True)
class FactorMargin:
    multiplier: float = 1.0

    def __post_init__(self):
        if not math.isfinite(self.multiplier) or self.multiplier < 0:
            raise ValueError(f"margin multiplier must be finite and >= 0: {self.multiplier}")

    def apply(self, length_m: float) -> float:
        return length_m * self.multiplier

    def describe(self) -> str:
        return f"× {self.multiplier}"


@dataclass(frozen=True)
class FixedMargin:
    meters: float = 0.5

    def __post_init__(self):
        if not math.isfinite(self.meters) or self.meters < 0:
            raise ValueError(f"margin distance must be finite and >= 0: {self.meters}")

    def apply(self, length_m: float) -> float:
        return length_m + self.meters

    def describe(self) -> str:
        return f"+ {self.meters}m"


Margin = Union[FactorMargin, FixedMargin]

MARGIN_MODES = ("factor", "fixed")


def margin_from_mode(mode: str, value: float) -> Margin:
    """Builds a margin from the persisted ('factor' | 'fixed', value) pair."""
    if mode == "factor":
        return FactorMargin(float(value))
    if mode == "fixed":
        return FixedMargin(float(value))
    raise ValueError(f"Unknown margin mode {mode!r}, expected one of {MARGIN_MODES}")


@dataclass(frozen=True)
class SpacingResult:
    recommended_m: float
    status: ShadowStatus
    margin: Margin


@dataclass(frozen=True)
class DailyProfilePoint:
    hour: float
    label: str
    spacing: float
    l_row: float
    is_backside: bool
    status: ShadowStatus


@dataclass(frozen=True)
class DailyProfile:
    points: Tuple[DailyProfilePoint, ...]
    governing: Optional[DailyProfilePoint]  # None if no hour constrains the pitch

    @property
    def max_spacing(self) -> float:
        return self.governing.spacing if self.governing is not None else 0.0

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame([{
            'Time': p.label,
            'Hour': p.hour,
            'Spacing_m': p.spacing,
            'L_row_m': p.l_row,
            'Backside': p.is_backside,
            'Status': p.status.value,
        } for p in self.points])
        df['Governing'] = False
        if self.governing is not None:
            df.loc[df['Time'] == self.governing.label, 'Governing'] = True
        return df


# --- SOLAR POSITION MODEL ---
def solar_position(lat: float, lon: float, hour: float) -> SolarPosition:
    """
    Simplified winter-solstice sun position.
    `hour` is local standard time on the 135E meridian (JST).
    Undefined at lat = +/-90 (caller must guard).
    """
    lat_rad = to_radians(lat)
    dec_rad = to_radians(WINTER_SOLSTICE_DECLINATION)

    time_offset = (lon - REFERENCE_MERIDIAN) / 15.0
    solar_time = hour + time_offset + EQUATION_OF_TIME_MIN / 60.0
    t = (solar_time - 12.0) * 15.0
    t_rad = to_radians(t)

    sin_h = np.sin(lat_rad) * np.sin(dec_rad) + np.cos(lat_rad) * np.cos(dec_rad) * np.cos(t_rad)
    h_rad = np.arcsin(np.clip(sin_h, -1.0, 1.0))
    h_deg = float(to_degrees(h_rad))

    if h_deg < 0:
        # Night: azimuth is not carried over from the last valid hour
        return SolarPosition(altitude_deg=0.0, azimuth_deg=0.0,
                             hour_angle_deg=float(t), below_horizon=True)

    sin_a = (np.cos(dec_rad) * np.sin(t_rad)) / np.cos(h_rad)
    cos_a = (np.sin(h_rad) * np.sin(lat_rad) - np.sin(dec_rad)) / (np.cos(h_rad) * np.cos(lat_rad))
    # atan2 is south-referenced, shift so North = 0
    az_deg = float(to_degrees(np.arctan2(sin_a, cos_a))) + 180.0

    return SolarPosition(altitude_deg=h_deg, azimuth_deg=az_deg, hour_angle_deg=float(t))


# --- PANEL GEOMETRY MODEL ---
def top_gl_height(panel_length_mm: float, vertical_count: int,
                  tilt_deg: float, bottom_clearance_mm: float) -> float:
    """Height of the upper panel edge above ground level [m]. 0 for invalid input."""
    if panel_length_mm <= 0 or vertical_count <= 0 or bottom_clearance_mm < 0:
        return 0.0

    total_length_m = (panel_length_mm * vertical_count) / 1000.0
    relative_height_m = total_length_m * float(np.sin(to_radians(tilt_deg)))
    return bottom_clearance_mm / 1000.0 + relative_height_m


# --- SHADOW PROJECTOR ---
def basic_shadow_length(top_height_m: float, sun_altitude_deg: float) -> Optional[float]:
    """Cross-section shadow length, ignoring azimuth. None when the sun is not up."""
    if sun_altitude_deg <= 0:
        return None
    if top_height_m <= 0:
        return 0.0
    return top_height_m / float(np.tan(to_radians(sun_altitude_deg)))


def project_shadow(top_height_m: float, sun_altitude_deg: float,
                   sun_azimuth_deg: float, panel_azimuth_deg: float) -> ShadowResult:
    l_basic = basic_shadow_length(top_height_m, sun_altitude_deg)

    delta_deg = sun_azimuth_deg - panel_azimuth_deg
    cos_delta = float(np.cos(to_radians(delta_deg)))

    night = sun_altitude_deg <= 0
    backside = night or cos_delta <= COS_DELTA_TOLERANCE

    if night:
        status = ShadowStatus.NIGHT_NO_CONSTRAINT
    elif top_height_m <= 0:
        status = ShadowStatus.INVALID_GEOMETRY
    elif backside:
        status = ShadowStatus.BACKSIDE_NO_CONSTRAINT
    else:
        status = ShadowStatus.VALID

    if backside:
        # Sun behind or beside the row: nothing falls on the next row
        return ShadowResult(l_basic=l_basic, l_row=0.0, is_backside=True,
                            azimuth_diff_deg=delta_deg, status=status)

    return ShadowResult(l_basic=l_basic, l_row=l_basic * cos_delta, is_backside=False,
                        azimuth_diff_deg=delta_deg, status=status)


# --- SPACING POLICY ---
def row_spacing(shadow_length_m: Optional[float], margin: Margin) -> float:
    if not isinstance(margin, (FactorMargin, FixedMargin)):
        raise TypeError(f"Unsupported margin type: {type(margin).__name__}")
    if shadow_length_m is None or not math.isfinite(shadow_length_m) or shadow_length_m < 0:
        return 0.0
    return margin.apply(shadow_length_m)


def recommend_spacing(shadow: ShadowResult, margin: Margin) -> SpacingResult:
    return SpacingResult(recommended_m=row_spacing(shadow.l_row, margin),
                         status=shadow.status, margin=margin)


# --- DAILY PROFILE SWEEP ---
def evaluate_instant(location: GeoLocation, hour: float, top_height_m: float,
                     panel_azimuth_deg: float, margin: Margin
                     ) -> Tuple[SolarPosition, ShadowResult, SpacingResult]:
    pos = solar_position(location.latitude, location.longitude, hour)
    shadow = project_shadow(top_height_m, pos.altitude_deg, pos.azimuth_deg, panel_azimuth_deg)
    return pos, shadow, recommend_spacing(shadow, margin)


def daily_profile(location: GeoLocation, top_height_m: float, panel_azimuth_deg: float,
                  margin: Margin, hours: Tuple[float, ...] = DESIGN_HOURS) -> DailyProfile:
    points = []
    governing = None
    for hour in sorted(hours):
        pos, shadow, spacing = evaluate_instant(location, hour, top_height_m,
                                                panel_azimuth_deg, margin)
        point = DailyProfilePoint(
            hour=hour,
            label=hour_label(hour),
            spacing=spacing.recommended_m,
            l_row=shadow.l_row,
            is_backside=shadow.is_backside,
            status=shadow.status,
        )
        logger.debug("%s alt=%.1f az=%.1f l_row=%.2f spacing=%.2f (%s)",
                     point.label, pos.altitude_deg, pos.azimuth_deg,
                     point.l_row, point.spacing, point.status.value)
        points.append(point)

        # Strict '>' keeps the earliest hour on ties
        if point.spacing > 0 and (governing is None or point.spacing > governing.spacing):
            governing = point

    return DailyProfile(points=tuple(points), governing=governing)
