"""Tests for planner: settings snapshot, single-instant evaluation, checks and export."""

from __future__ import annotations

import json
import math

import pandas as pd
import pytest

import regions as region_data
from planner import (
    PlannerSettings,
    RowSpacingPlanner,
    SpacingVerdict,
    check_existing_spacing,
    load_settings,
    reference_solar_position,
    save_settings,
)
from spacing_engine import FactorMargin, FixedMargin, ShadowStatus


# ======================================================================
# Settings snapshot
# ======================================================================


class TestPlannerSettings:
    """PlannerSettings defaults and derived values."""

    def test_defaults(self):
        s = PlannerSettings()
        assert s.region_id == "tokyo"
        assert s.time == "12:00"
        assert s.panel_azimuth == 180.0
        assert s.top_height_m() == 1.5
        assert s.margin() == FactorMargin(1.0)

    def test_panel_mode_height(self):
        s = PlannerSettings(gl_mode="panel")
        assert s.top_height_m() == pytest.approx(2.158, abs=0.001)

    def test_fixed_margin(self):
        s = PlannerSettings(margin_mode="fixed", margin_fixed_m=0.8)
        assert s.margin() == FixedMargin(0.8)

    def test_unknown_margin_mode(self):
        with pytest.raises(ValueError):
            PlannerSettings(margin_mode="percent").margin()

    def test_negative_margin_rejected(self):
        with pytest.raises(ValueError):
            PlannerSettings(margin_mode="factor", margin_factor=-1.0).margin()
        with pytest.raises(ValueError):
            PlannerSettings(margin_mode="fixed", margin_fixed_m=-0.1).margin()


class TestSettingsPersistence:
    """load_settings / save_settings round trip and fallbacks."""

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_settings(tmp_path / "none.json") == PlannerSettings()

    def test_round_trip(self, tmp_path):
        s = PlannerSettings(region_id="osaka", time="10:00", panel_azimuth=135.0, gl_mode="panel",
                            tilt_deg=30.0, vertical_count=3, margin_mode="fixed", margin_fixed_m=0.7)
        path = save_settings(s, tmp_path / "settings.json")
        assert load_settings(path) == s

    def test_corrupt_file_gives_defaults(self, tmp_path, caplog):
        path = tmp_path / "settings.json"
        path.write_text("{oops", encoding="utf-8")
        assert load_settings(path) == PlannerSettings()
        assert "Failed to parse saved settings" in caplog.text

    def test_non_object_gives_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")
        assert load_settings(path) == PlannerSettings()

    def test_invalid_fields_fall_back_individually(self, tmp_path, regions):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({
            "region_id": "atlantis",
            "time": "18:00",
            "tilt_deg": "steep",
            "gl_mode": "laser",
            "margin_mode": "percent",
            "panel_azimuth": 200,
            "unknown_key": 1,
        }), encoding="utf-8")
        s = load_settings(path, regions=regions)
        assert s.region_id == "tokyo"
        assert s.time == "12:00"
        assert s.tilt_deg == 20.0
        assert s.gl_mode == "direct"
        assert s.margin_mode == "factor"
        assert s.panel_azimuth == 200.0

    @pytest.mark.parametrize("field, value", [
        ("margin_factor", -1.0),
        ("margin_fixed_m", -5.0),
        ("margin_factor", 12.0),
        ("manual_gl_height", 25.0),
        ("panel_azimuth", -10.0),
        ("panel_azimuth", 400.0),
        ("vertical_count", 11),
        ("tilt_deg", 95.0),
        ("bottom_clearance_mm", -1.0),
    ])
    def test_out_of_range_field_falls_back(self, tmp_path, field, value):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({field: value, "margin_mode": "fixed"}), encoding="utf-8")
        s = load_settings(path)
        assert getattr(s, field) == getattr(PlannerSettings(), field)
        assert s.margin_mode == "fixed"

    def test_bounds_are_inclusive(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"panel_azimuth": 360.0, "manual_gl_height": 0.0,
                                    "margin_fixed_m": 20.0}), encoding="utf-8")
        s = load_settings(path)
        assert s.panel_azimuth == 360.0
        assert s.manual_gl_height == 0.0
        assert s.margin_fixed_m == 20.0

    def test_non_finite_field_falls_back(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text('{"tilt_deg": NaN, "vertical_count": Infinity}', encoding="utf-8")
        s = load_settings(path)
        assert s.tilt_deg == 20.0
        assert s.vertical_count == 2

    def test_negative_saved_margin_never_gives_negative_pitch(self, tmp_path, regions):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"margin_mode": "fixed", "margin_fixed_m": -5.0}), encoding="utf-8")
        s = load_settings(path, regions=regions)
        res = RowSpacingPlanner(s, regions).evaluate()
        assert res.recommended_spacing >= 0.0
        assert res.margin_detail == "+ 0.5m"


# ======================================================================
# Planner evaluation
# ======================================================================


class TestRowSpacingPlanner:
    """Single-instant evaluation and daily sweep through the planner."""

    def test_tokyo_noon_south(self, regions):
        """Tokyo 12:00, south-facing: sun almost in line, l_row ~ l_basic."""
        planner = RowSpacingPlanner(PlannerSettings(gl_mode="panel"), regions)
        res = planner.evaluate()
        assert res.region_name == "東京都"
        assert res.time == "12:00"
        assert res.altitude_deg == pytest.approx(30.71, abs=0.1)
        assert res.azimuth_deg == pytest.approx(185.09, abs=0.1)
        assert res.azimuth_diff_deg == pytest.approx(5.09, abs=0.1)
        assert res.h_top == pytest.approx(2.158, abs=0.001)
        assert res.l_basic == pytest.approx(res.h_top / math.tan(math.radians(res.altitude_deg)))
        assert res.l_row == pytest.approx(res.l_basic, rel=0.005)
        assert res.recommended_spacing == res.l_row
        assert not res.is_backside
        assert res.status is ShadowStatus.VALID
        assert res.margin_detail == "× 1.0"

    def test_evaluate_other_hour(self, regions):
        planner = RowSpacingPlanner(PlannerSettings(), regions)
        res = planner.evaluate("09:00")
        assert res.time == "09:00"
        assert res.azimuth_deg < 180.0

    def test_evaluate_rejects_non_design_hour(self, regions):
        planner = RowSpacingPlanner(PlannerSettings(), regions)
        with pytest.raises(ValueError):
            planner.evaluate("18:00")

    def test_fixed_margin_adds_distance(self, regions):
        base = RowSpacingPlanner(PlannerSettings(), regions).evaluate()
        fixed = RowSpacingPlanner(PlannerSettings(margin_mode="fixed", margin_fixed_m=0.5), regions).evaluate()
        assert fixed.recommended_spacing == pytest.approx(base.l_row + 0.5)
        assert fixed.margin_detail == "+ 0.5m"

    def test_run_day_governing(self, regions):
        profile = RowSpacingPlanner(PlannerSettings(gl_mode="panel"), regions).run_day()
        assert len(profile.points) == 7
        assert profile.governing.spacing == max(p.spacing for p in profile.points)

    def test_unknown_region(self, regions):
        with pytest.raises(region_data.RegionNotFoundError):
            RowSpacingPlanner(PlannerSettings(region_id="atlantis"), regions)

    def test_polar_region_rejected(self, write_regions):
        path = write_regions({"regions": [{"id": "pole", "nameJa": "北極", "lat": 90.0, "lon": 0.0}]})
        polar = region_data.load_regions(path)
        with pytest.raises(ValueError, match="Polar"):
            RowSpacingPlanner(PlannerSettings(region_id="pole"), polar)


class TestExistingSpacingCheck:
    """Verdict on a proposed row pitch."""

    @pytest.fixture
    def south_result(self, regions):
        return RowSpacingPlanner(PlannerSettings(), regions).evaluate()

    def test_ok(self, south_result):
        check = check_existing_spacing(south_result.recommended_spacing + 0.1, south_result)
        assert check.verdict is SpacingVerdict.OK
        assert check.shortfall_m == 0.0

    def test_exactly_recommended_is_ok(self, south_result):
        check = check_existing_spacing(south_result.recommended_spacing, south_result)
        assert check.verdict is SpacingVerdict.OK

    def test_short(self, south_result):
        check = check_existing_spacing(south_result.recommended_spacing - 0.4, south_result)
        assert check.verdict is SpacingVerdict.SHORT
        assert check.shortfall_m == pytest.approx(0.4)

    def test_backside_has_no_constraint(self, regions):
        res = RowSpacingPlanner(PlannerSettings(panel_azimuth=0.0), regions).evaluate()
        assert res.is_backside
        check = check_existing_spacing(0.1, res)
        assert check.verdict is SpacingVerdict.NO_CONSTRAINT

    def test_night_is_distinct_from_backside(self, write_regions):
        """Sun below the horizon reports a night status, not a backside one."""
        path = write_regions({"regions": [{"id": "arctic", "nameJa": "北極圏", "lat": 68.0, "lon": 135.0}]})
        arctic = region_data.load_regions(path)
        res = RowSpacingPlanner(PlannerSettings(region_id="arctic"), arctic).evaluate()
        assert res.status is ShadowStatus.NIGHT_NO_CONSTRAINT
        assert res.l_basic is None
        assert res.l_row == 0.0
        check = check_existing_spacing(0.1, res)
        assert check.verdict is SpacingVerdict.NO_CONSTRAINT

    def test_invalid_geometry(self, regions):
        res = RowSpacingPlanner(PlannerSettings(manual_gl_height=0.0), regions).evaluate()
        assert res.status is ShadowStatus.INVALID_GEOMETRY
        check = check_existing_spacing(1.0, res)
        assert check.verdict is SpacingVerdict.INVALID_GEOMETRY


# ======================================================================
# Export / reference
# ======================================================================


class TestSaveResults:
    def test_writes_csv_and_json(self, regions, tmp_path):
        planner = RowSpacingPlanner(PlannerSettings(gl_mode="panel"), regions)
        res = planner.evaluate()
        profile = planner.run_day()
        base = tmp_path / "tokyo_result"
        planner.save_results(res, profile, str(base))

        df = pd.read_csv(f"{base}.csv")
        assert list(df["Time"]) == [p.label for p in profile.points]
        assert df["Governing"].sum() == 1

        with open(f"{base}.json", encoding="utf-8") as f:
            saved = json.load(f)
        assert saved["settings"]["region_id"] == "tokyo"
        assert saved["location"]["lat"] == pytest.approx(35.68)
        assert saved["result"]["status"] == "valid"
        assert saved["result"]["recommended_spacing"] == pytest.approx(res.recommended_spacing)
        assert saved["governing"]["time"] == profile.governing.label


class TestReferencePosition:
    """Simplified model against pvlib on the solstice date."""

    def test_tokyo_noon_close_to_pvlib(self, regions):
        loc = region_data.get_location(regions, "tokyo")
        elevation, azimuth = reference_solar_position(loc, 12)
        planner = RowSpacingPlanner(PlannerSettings(), regions)
        res = planner.evaluate()
        assert elevation == pytest.approx(res.altitude_deg, abs=1.0)
        assert azimuth == pytest.approx(res.azimuth_deg, abs=2.0)

    def test_planner_reference_uses_settings_time(self, regions):
        planner = RowSpacingPlanner(PlannerSettings(time="10:00"), regions)
        elevation, azimuth = planner.reference_position()
        assert 0.0 < elevation < 35.0
        assert azimuth < 180.0
