import logging

import streamlit as st
import pandas as pd
import plotly.graph_objects as go

import regions as region_data
from planner import (
    SETTINGS_BOUNDS,
    PlannerSettings,
    RowSpacingPlanner,
    SpacingVerdict,
    check_existing_spacing,
    load_settings,
    save_settings,
)
from spacing_engine import DESIGN_HOURS, hour_label, ShadowStatus

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

# ==========================================
# 1. SETUP & SESSION STATE
# ==========================================
st.set_page_config(page_title="PV Row Spacing Planner", layout="wide", initial_sidebar_state="expanded")

try:
    regions = region_data.load_regions()
except region_data.RegionDataError as e:
    st.error(f"エラーが発生しました: {e}")
    if st.button("リロード"):
        st.rerun()
    st.stop()

if 'settings' not in st.session_state:
    st.session_state['settings'] = load_settings(regions=regions)
if 'result' not in st.session_state:
    st.session_state['result'] = None
    st.session_state['profile'] = None

saved: PlannerSettings = st.session_state['settings']

# ==========================================
# 2. SIDEBAR - DESIGN CONDITIONS
# ==========================================
st.sidebar.title("☀️ 設計条件")

# A. Region & Time
region_ids = list(regions.index)
region_id = st.sidebar.selectbox(
    "地域 (47都道府県)", region_ids,
    index=region_ids.index(saved.region_id),
    format_func=lambda rid: regions.loc[rid, 'nameJa'],
)
time_options = [hour_label(h) for h in DESIGN_HOURS]
time_label = st.sidebar.selectbox(f"時刻 ({region_data.DESIGN_SET_LABEL})", time_options,
                                  index=time_options.index(saved.time))

# B. Panel Azimuth
st.sidebar.subheader("パネル方位角 Am [deg]")
AZIMUTH_PRESETS = {"南(180)": 180.0, "南東(135)": 135.0, "南西(225)": 225.0, "東(90)": 90.0, "西(270)": 270.0}
preset = st.sidebar.radio("プリセット", ["手動"] + list(AZIMUTH_PRESETS), horizontal=True)
if preset == "手動":
    panel_azimuth = st.sidebar.number_input("方位角", *SETTINGS_BOUNDS["panel_azimuth"], float(saved.panel_azimuth), 1.0)
else:
    panel_azimuth = AZIMUTH_PRESETS[preset]
st.sidebar.caption("方位ガイド: 北=0°, 東=90°, 南=180°, 西=270°")

# C. GL Height
st.sidebar.subheader("パネル上端 GL高さ")
gl_mode = st.sidebar.radio("入力方法", ["direct", "panel"], index=["direct", "panel"].index(saved.gl_mode),
                           format_func=lambda m: "直接入力" if m == "direct" else "寸法から計算", horizontal=True)
manual_gl_height = saved.manual_gl_height
panel_length_mm, vertical_count = saved.panel_length_mm, saved.vertical_count
tilt_deg, bottom_clearance_mm = saved.tilt_deg, saved.bottom_clearance_mm
if gl_mode == "direct":
    manual_gl_height = st.sidebar.number_input("上端 GL高さ [m]", *SETTINGS_BOUNDS["manual_gl_height"], float(saved.manual_gl_height), 0.01)
else:
    panel_length_mm = st.sidebar.number_input("パネル長辺 [mm]", *SETTINGS_BOUNDS["panel_length_mm"], float(saved.panel_length_mm), 1.0)
    vertical_count = int(st.sidebar.number_input("縦段数", *SETTINGS_BOUNDS["vertical_count"], int(saved.vertical_count), 1))
    tilt_deg = st.sidebar.number_input("傾斜角 [deg]", *SETTINGS_BOUNDS["tilt_deg"], float(saved.tilt_deg), 1.0)
    bottom_clearance_mm = st.sidebar.number_input("下端 GL [mm]", *SETTINGS_BOUNDS["bottom_clearance_mm"], float(saved.bottom_clearance_mm), 10.0)

# D. Margin
st.sidebar.subheader("安全マージン")
margin_mode = st.sidebar.radio("方式", ["factor", "fixed"], index=["factor", "fixed"].index(saved.margin_mode),
                               format_func=lambda m: "割増係数" if m == "factor" else "固定距離加算", horizontal=True)
margin_factor, margin_fixed_m = saved.margin_factor, saved.margin_fixed_m
if margin_mode == "factor":
    margin_factor = st.sidebar.number_input("係数 [倍]", *SETTINGS_BOUNDS["margin_factor"], float(saved.margin_factor), 0.1)
else:
    margin_fixed_m = st.sidebar.number_input("追加距離 [m]", *SETTINGS_BOUNDS["margin_fixed_m"], float(saved.margin_fixed_m), 0.1)

settings = PlannerSettings(
    region_id=region_id, time=time_label, panel_azimuth=panel_azimuth,
    gl_mode=gl_mode, manual_gl_height=manual_gl_height,
    panel_length_mm=panel_length_mm, panel_width_mm=saved.panel_width_mm,
    vertical_count=vertical_count, tilt_deg=tilt_deg, bottom_clearance_mm=bottom_clearance_mm,
    margin_mode=margin_mode, margin_factor=margin_factor, margin_fixed_m=margin_fixed_m,
)
if gl_mode == "panel":
    st.sidebar.metric("計算上の上端GL", f"{settings.top_height_m():.3f} m")

# E. Actions
run_calc = st.sidebar.button("📏 行間隔を計算", type="primary")

# ==========================================
# 3. RUN LOGIC
# ==========================================
if run_calc:
    planner = RowSpacingPlanner(settings, regions)
    st.session_state['result'] = planner.evaluate()
    st.session_state['profile'] = planner.run_day()
    st.session_state['reference'] = planner.reference_position()
    st.session_state['settings'] = settings
    save_settings(settings)

result = st.session_state['result']
profile = st.session_state['profile']


# ==========================================
# 4. FIGURES
# ==========================================
def build_profile_figure(profile, selected_time):
    df = profile.to_frame()
    fig = go.Figure()
    fig.add_trace(go.Scatter(x=df['Time'], y=df['Spacing_m'], mode='lines+markers',
                             name="推奨間隔", line=dict(color='#1e293b', width=2)))
    backside = df[df['Backside']]
    if not backside.empty:
        fig.add_trace(go.Scatter(x=backside['Time'], y=backside['Spacing_m'], mode='markers',
                                 marker=dict(color='orange', size=9), name="背面日射"))
    if profile.governing is not None:
        fig.add_trace(go.Scatter(x=[profile.governing.label], y=[profile.governing.spacing],
                                 mode='markers+text', marker=dict(color='red', size=11),
                                 text=[f"{profile.governing.spacing:.2f}m"], textposition="top center",
                                 name="最大ピッチ"))
    fig.add_vline(x=time_options.index(selected_time), line_dash="dot", line_color="#aaa")
    fig.update_layout(height=260, margin=dict(t=20, b=0, l=0, r=0), yaxis_title="m",
                      legend=dict(orientation="h", y=1.15))
    return fig


def build_section_figure(result):
    """Cross-section: front row, its shadow along the row axis and the next row at the recommended pitch."""
    h, shadow, pitch = result.h_top, result.l_row, result.recommended_spacing
    reach = max(shadow, pitch, 1.0) * 1.15
    fig = go.Figure()
    # Ground
    fig.add_trace(go.Scatter(x=[-0.5, reach], y=[0, 0], mode='lines', line=dict(color='#666', width=2),
                             showlegend=False, hoverinfo='skip'))
    # Front row post + panel edge
    fig.add_trace(go.Scatter(x=[0, 0], y=[0, h], mode='lines', line=dict(color='#333', width=5),
                             name="前列"))
    if not result.is_backside and shadow > 0:
        fig.add_trace(go.Scatter(x=[0, shadow], y=[h, 0], mode='lines',
                                 line=dict(color='#eab308', dash='dash'), name="太陽光線"))
        fig.add_trace(go.Scatter(x=[0, shadow], y=[0, 0], mode='lines',
                                 line=dict(color='black', width=8), opacity=0.25,
                                 name=f"影 {shadow:.2f}m"))
    if pitch > 0:
        fig.add_trace(go.Scatter(x=[pitch, pitch], y=[0, h], mode='lines',
                                 line=dict(color='#999', width=3, dash='dot'), name="次列"))
        fig.add_annotation(x=pitch / 2, y=-0.25 * max(h, 0.5), text=f"推奨間隔: {pitch:.2f}m",
                           showarrow=False, font=dict(color='#2563eb', size=14))
    fig.update_layout(height=260, margin=dict(t=10, b=0, l=0, r=0),
                      xaxis=dict(title="m", zeroline=False),
                      yaxis=dict(scaleanchor='x', visible=False),
                      legend=dict(orientation="h", y=1.15))
    return fig


# ==========================================
# 5. APP LAYOUT
# ==========================================
st.title("PV Row Spacing Planner")

if result is None:
    st.info("👈 条件を入力して「行間隔を計算」ボタンを押してください")
    st.stop()

col_res, col_chart = st.columns([2, 3])

with col_res:
    st.subheader("計算結果")
    st.caption(f"{result.region_name} / 冬至 {result.time}")

    if result.status is ShadowStatus.INVALID_GEOMETRY:
        st.error("パネル寸法が不正です（上端GL高さ = 0）。")
    elif result.status is ShadowStatus.NIGHT_NO_CONSTRAINT:
        st.info("**影による制約なし**\n\nこの時刻、太陽は地平線の下にあります。")
    elif result.is_backside:
        st.warning("**影による制約なし**\n\n太陽がパネルの背面（または真横）にあるため、"
                   "前列パネルは後列に影を落としません。")
    else:
        st.metric("推奨行間隔 (最小ピッチ)", f"{result.recommended_spacing:.2f} m")
        st.caption(f"(= 行方向影長 {result.l_row:.2f} m {result.margin_detail})")

    l_basic_str = "∞" if result.l_basic is None else f"{result.l_basic:.2f}"
    details = pd.DataFrame([
        ("太陽高度", f"{result.altitude_deg:.1f}°"),
        ("太陽方位 As", f"{result.azimuth_deg:.1f}°"),
        ("パネル方位 Am", f"{result.panel_azimuth_deg:.0f}°"),
        ("方位差 ΔA (As-Am)", f"{result.azimuth_diff_deg:.1f}°"),
        ("GL高さ", f"{result.h_top:.3f} m"),
        ("基本影長 L_basic", f"{l_basic_str} m"),
        ("行方向影長 L_row", f"{result.l_row:.2f} m"),
    ], columns=["項目", "値"])
    st.dataframe(details, hide_index=True, use_container_width=True)

    ref = st.session_state.get('reference')
    if ref is not None:
        st.caption(f"pvlib 参考値 (12/21): 高度 {ref[0]:.1f}°, 方位 {ref[1]:.1f}°")

    # Validation Tool
    st.subheader("🔄 既存案の検証")
    existing = st.number_input("設計中の行間隔 [m]", 0.0, 100.0, 0.0, 0.05)
    if existing > 0:
        check = check_existing_spacing(existing, result)
        if check.verdict is SpacingVerdict.OK:
            st.success("OK: 影はかかりません")
        elif check.verdict is SpacingVerdict.SHORT:
            st.error(f"NG: {check.shortfall_m:.2f}m 不足しています")
        elif check.verdict is SpacingVerdict.INVALID_GEOMETRY:
            st.error("パネル寸法が不正なため検証できません")
        else:
            st.warning("影の制約はありません")

with col_chart:
    head_l, head_r = st.columns([3, 2])
    head_l.subheader("時間変化 (9:00-15:00)")
    if profile.governing is not None:
        head_r.markdown(f"最大ピッチ: :red[**{profile.governing.spacing:.2f}m**] ({profile.governing.label})")
    else:
        head_r.markdown("最大ピッチ: 制約なし")
    st.plotly_chart(build_profile_figure(profile, result.time), use_container_width=True)
    st.caption("※赤点は9:00-15:00の範囲内での最大必要間隔")

    st.subheader("配置イメージ (断面)")
    st.plotly_chart(build_section_figure(result), use_container_width=True)

with st.expander("About"):
    st.markdown(
        "冬至の太陽高度・方位（赤緯 -23.44°、均時差 0、東経135°基準）から、"
        "パネル上端の影が後列に届かない最小行間隔を求めます。\n\n"
        "- 基本影長 L_basic = H / tan(h)\n"
        "- 行方向影長 L_row = L_basic × cos(ΔA)、cos(ΔA) ≤ 0 は背面日射（制約なし）\n"
        "- 推奨間隔 = L_row × 係数 または L_row + 追加距離\n\n"
        "地面の傾斜や3列以上の部分影は考慮していません。"
    )
