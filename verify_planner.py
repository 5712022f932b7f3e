import regions as region_data
from planner import PlannerSettings, RowSpacingPlanner

def verify():
    print("Verifying Row Spacing Planner...")
    try:
        regions = region_data.load_regions()
        settings = PlannerSettings(region_id="tokyo", time="12:00", panel_azimuth=180.0,
                                   gl_mode="panel")
        planner = RowSpacingPlanner(settings, regions)

        print("Running evaluate (Tokyo, 12:00, South)...")
        result = planner.evaluate()
        print(f"  Altitude {result.altitude_deg:.2f} deg, Azimuth {result.azimuth_deg:.2f} deg")
        print(f"  H_top {result.h_top:.3f} m, L_row {result.l_row:.2f} m, Spacing {result.recommended_spacing:.2f} m")

        if 30.0 < result.altitude_deg < 31.5:
            print("SUCCESS: Noon altitude in expected range.")
        else:
            print("FAILURE: Noon altitude out of range.")

        if abs(result.h_top - 2.158) < 0.001:
            print("SUCCESS: Top GL height matches 2.158 m.")
        else:
            print("FAILURE: Top GL height mismatch.")

        print("Running run_day...")
        profile = planner.run_day()
        if [p.label for p in profile.points] == ["09:00", "10:00", "11:00", "12:00", "13:00", "14:00", "15:00"]:
            print("SUCCESS: 7 design hours in order.")
        else:
            print("FAILURE: Design hours missing or out of order.")

        if profile.governing is not None and profile.governing.spacing == max(p.spacing for p in profile.points):
            print(f"SUCCESS: Governing hour {profile.governing.label} ({profile.governing.spacing:.2f} m).")
        else:
            print("FAILURE: Governing hour does not carry the maximum spacing.")

        el, az = planner.reference_position()
        print(f"  pvlib reference: elevation {el:.2f} deg, azimuth {az:.2f} deg")

    except Exception as e:
        print(f"CRITICAL FAILURE: {e}")
        import traceback
        traceback.print_exc()

if __name__ == "__main__":
    verify()
