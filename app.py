import html
import json
import time
from typing import List, Optional

import streamlit as st
from streamlit_sortables import sort_items

from core.charts import legend_html, stacked_bar_chart
from core.controller import SNAPSHOT_FILENAME, ChartController
from core.data import DATA_DIR, DEFAULT_EXCEL_PATH, STATIC_DATA_PATH, load_quarter_data, load_static_dataset
from core.playback import PollingScheduler
from core.preferences import DEFAULT_PROFILE, JsonFileStorage, PreferenceStore, load_published_defaults, prefs_path_for
from core.view_state import ScaleMode

SCALE_LABELS = {
    ScaleMode.RAW.value: "Raw",
    ScaleMode.THOUSANDS.value: "Thousands (k)",
    ScaleMode.MILLIONS.value: "Millions (M)",
}


# ---------- UI / state helpers ----------
def inject_base_styles():
    if st.session_state.get("_base_css_injected"):
        return
    st.markdown(
        """
        <style>
        .window-label {color: #6b7280;font-size: 0.9rem;margin: 4px 0 8px;}
        .legend-row {display: flex;align-items: center;gap: 8px;margin: 2px 0;font-size: 0.9rem;}
        .legend-row .swatch {width: 14px;height: 14px;border-radius: 3px;border: 1px solid rgba(0,0,0,0.15);}
        </style>
        """,
        unsafe_allow_html=True,
    )
    st.session_state["_base_css_injected"] = True


def get_controller() -> ChartController:
    if "controller" not in st.session_state:
        scheduler = PollingScheduler()
        published = load_published_defaults(DATA_DIR / "published-defaults.json")
        profile = st.query_params.get("profile") or DEFAULT_PROFILE
        prefs = PreferenceStore(JsonFileStorage(prefs_path_for(profile)), published)
        st.session_state["profile"] = profile
        st.session_state["scheduler"] = scheduler
        st.session_state["controller"] = ChartController(prefs, scheduler)
        st.session_state["order_version"] = 0
    return st.session_state["controller"]


def load_dataset(ctrl: ChartController, excel_path: str):
    excel_path = (excel_path or DEFAULT_EXCEL_PATH).strip()
    st.query_params["excelPath"] = excel_path
    if ctrl.load_from(lambda: load_quarter_data(excel_path), "Loading workbook…"):
        return
    # Hosting without the workbook: fall back to the published data.json.
    workbook_error = ctrl.status
    if not ctrl.load_from(lambda: load_static_dataset(STATIC_DATA_PATH), "Loading published data.json…"):
        ctrl.status = f"{workbook_error} | {ctrl.status}"


def render_legend(categories: List[str], color):
    st.markdown(legend_html(categories, color), unsafe_allow_html=True)


# ---------- callbacks ----------
def on_load():
    load_dataset(get_controller(), st.session_state["excel_path"])


def on_slider():
    get_controller().seek(int(st.session_state["window_slider"]))


def on_scale():
    get_controller().set_scale_mode(st.session_state["y_scale"])


def on_height():
    ctrl = get_controller()
    ctrl.resize(ctrl.viewport.width, float(st.session_state["chart_height"]))


def on_select_category():
    start = get_controller().select_category(st.session_state["legend_category"])
    st.session_state["color_picker"] = start
    st.session_state["color_hex"] = start


def on_pick_color():
    st.session_state["color_hex"] = st.session_state["color_picker"].upper()


def on_apply_color():
    candidate = (st.session_state.get("color_hex") or "").strip() or st.session_state.get("color_picker", "")
    get_controller().apply_color(candidate)


def on_reset_colors():
    get_controller().reset_colors()
    st.session_state["legend_category"] = None


def on_reset_order():
    get_controller().reset_order()
    st.session_state["order_version"] += 1


# ---------- UI setup ----------
st.set_page_config(page_title="Quarter Chart", layout="wide")
inject_base_styles()
st.title("Quarter Chart")
st.caption("Stacked quarterly counts per category, 12 quarters at a time.")

ctrl = get_controller()
st.session_state["scheduler"].run_pending()
if "excel_path" not in st.session_state:
    st.session_state["excel_path"] = st.query_params.get("excelPath") or DEFAULT_EXCEL_PATH
if ctrl.dataset is None and not st.session_state.get("_initial_load_done"):
    st.session_state["_initial_load_done"] = True
    load_dataset(ctrl, st.session_state["excel_path"])

path_cols = st.columns([6, 1])
path_cols[0].text_input("Excel path", key="excel_path", on_change=on_load)
path_cols[1].button("Load", on_click=on_load, use_container_width=True)

if ctrl.status:
    st.info(ctrl.status)

# ----- Sidebar: chart settings + legend editor -----
selected_category: Optional[str] = None
with st.sidebar:
    st.markdown("### Chart")
    st.session_state["y_scale"] = ctrl.view.scale_mode.value
    st.selectbox("Y axis", options=list(SCALE_LABELS), format_func=SCALE_LABELS.get, key="y_scale", on_change=on_scale)
    if "chart_height" not in st.session_state:
        st.session_state["chart_height"] = int(ctrl.viewport.height)
    st.number_input("Chart height (px)", min_value=240, max_value=1200, step=20, key="chart_height", on_change=on_height)

    if ctrl.dataset is not None:
        categories = ctrl.ordered_categories()
        color = ctrl.color_function()

        st.markdown("---")
        st.markdown("### Order")
        st.caption("Drag to reorder the stack (first = bottom).")
        sorted_categories = sort_items(
            categories,
            direction="vertical",
            key=f"category_sorter_{st.session_state['order_version']}",
        )
        if sorted_categories and list(sorted_categories) != categories:
            ctrl.set_order(list(sorted_categories))
            categories = ctrl.ordered_categories()
            color = ctrl.color_function()
        st.button("Reset order", on_click=on_reset_order)

        st.markdown("---")
        st.markdown("### Colors")
        st.caption(
            f"Saved on this server under profile '{st.session_state['profile']}'. "
            "Add ?profile=<name> to the URL to keep your own colors and order."
        )
        render_legend(categories, color)
        st.session_state.setdefault("legend_category", None)
        st.session_state.setdefault("color_picker", "#2563EB")
        st.session_state.setdefault("color_hex", "#2563EB")
        st.selectbox(
            "Kategorie",
            options=[None] + categories,
            format_func=lambda k: "Select a category…" if k is None else k,
            key="legend_category",
            on_change=on_select_category,
        )
        selected_category = st.session_state["legend_category"]
        if selected_category is not None:
            st.color_picker("Color", key="color_picker", on_change=on_pick_color)
            st.text_input("Hex (#RRGGBB)", key="color_hex")
            st.button("Apply color", on_click=on_apply_color)
        st.button("Reset colors", on_click=on_reset_colors)

        st.markdown("---")
        st.download_button(
            "Download published defaults",
            data=json.dumps(ctrl.preferences.export_snapshot(), ensure_ascii=False, indent=2),
            file_name=SNAPSHOT_FILENAME,
            mime="application/json",
            on_click=ctrl.export_snapshot,
        )

# ----- Playback controls + chart -----
if ctrl.dataset is None:
    st.warning("No data loaded. Check the Excel path or build the static data.json.")
    st.stop()

ctrl_cols = st.columns([1, 1, 6])
ctrl_cols[0].button(ctrl.play_label, on_click=ctrl.play, disabled=ctrl.view.is_playing, use_container_width=True)
ctrl_cols[1].button("Pause", on_click=ctrl.pause, disabled=not ctrl.view.is_playing, use_container_width=True)
with ctrl_cols[2]:
    if ctrl.max_start > 0:
        st.session_state["window_slider"] = ctrl.view.window_start
        st.slider("Window start", min_value=0, max_value=ctrl.max_start, step=1, key="window_slider", on_change=on_slider)

window = ctrl.window()
if window is not None:
    st.markdown(f"<div class='window-label'>{html.escape(window.label)}</div>", unsafe_allow_html=True)

plan = ctrl.render()
if plan is not None:
    st.altair_chart(stacked_bar_chart(plan, ctrl.view.scale_mode), use_container_width=True)

# Playback: sleep until the next tick is due, then rerun; the tick runs at the top of
# that rerun, after any Pause/seek callback has already cancelled it.
scheduler: PollingScheduler = st.session_state["scheduler"]
wait = scheduler.seconds_until_next()
if wait is not None:
    time.sleep(wait)
    st.rerun()
