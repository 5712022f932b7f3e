"""Shared test fixtures for the row spacing engine and planner tests."""

from __future__ import annotations

import json

import pandas as pd
import pytest

import regions as region_data
from spacing_engine import GeoLocation, PanelGeometry

TOKYO_LAT = 35.68
TOKYO_LON = 139.77


# ======================================================================
# Location / geometry fixtures
# ======================================================================

@pytest.fixture
def tokyo() -> GeoLocation:
    return GeoLocation(latitude=TOKYO_LAT, longitude=TOKYO_LON)


@pytest.fixture
def meridian_site() -> GeoLocation:
    """Site on the 135E reference meridian, where 12:00 is solar noon."""
    return GeoLocation(latitude=35.0, longitude=135.0)


@pytest.fixture
def default_panel() -> PanelGeometry:
    """2 x 2278 mm modules at 20 deg, 600 mm clearance (top GL ~2.158 m)."""
    return PanelGeometry(panel_length_mm=2278, vertical_count=2, tilt_deg=20, bottom_clearance_mm=600)


# ======================================================================
# Region dataset fixtures
# ======================================================================

@pytest.fixture(scope="session")
def regions() -> pd.DataFrame:
    """The bundled 47-prefecture dataset."""
    return region_data.load_regions()


@pytest.fixture
def write_regions(tmp_path):
    """Writes a region dataset to a temporary file and returns its path."""

    def _write(payload, name="regions.json"):
        path = tmp_path / name
        if isinstance(payload, str):
            path.write_text(payload, encoding="utf-8")
        else:
            path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        return path

    return _write
