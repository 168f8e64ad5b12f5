from __future__ import annotations

import pytest

from core.charts import (
    LABEL_MIN_HEIGHT,
    TRANSITION_MS,
    BandScale,
    LinearScale,
    Viewport,
    legend_html,
    linear_ticks,
    nice_upper_bound,
    render_chart,
    segment_table,
    stack_layout,
    stacked_bar_chart,
    to_vega_spec,
    tooltip_for,
    windowed_chart,
)
from core.data import QuarterValues
from core.view_state import ScaleMode

QUARTERS = ("2020-Q1", "2020-Q2")
CATEGORIES = ("A", "B")
SERIES = (
    QuarterValues("2020-Q1", {"A": 30, "B": 70}),
    QuarterValues("2020-Q2", {"A": 5, "B": 10}),
)
COLORS = {"A": "#111111", "B": "#222222"}


def color(category):
    return COLORS.get(category, "#999999")


@pytest.mark.parametrize("value,expected", [(1234, 1300), (97, 100), (100, 100), (0.5, 0.5), (0, 0), (-3, 0)])
def test_nice_upper_bound(value, expected):
    assert nice_upper_bound(value) == pytest.approx(expected)


def test_linear_ticks():
    assert linear_ticks(100) == [0, 20, 40, 60, 80, 100]
    assert linear_ticks(0) == [0.0]


def test_linear_ticks_keep_last_tick_despite_float_error():
    ticks = linear_ticks(0.57, 57)
    assert len(ticks) == 58
    assert ticks[-1] == pytest.approx(0.57)
    assert ticks[-1] <= 0.57
    assert linear_ticks(0.575, 57)[-1] == pytest.approx(0.57)


def test_legend_html_escapes_category_names():
    markup = legend_html(["<script>x</script>", "A&B"], lambda c: "#123456")
    assert "<script>" not in markup
    assert "&lt;script&gt;x&lt;/script&gt;" in markup
    assert "A&amp;B" in markup
    assert "background:#123456" in markup


def test_band_scale_centers_bands():
    x = BandScale(("a", "b"), 218)
    assert x.step == pytest.approx(100)
    assert x.bandwidth == pytest.approx(82)
    assert x("a") == pytest.approx(18)
    assert x("b") == pytest.approx(118)
    assert x("missing") == 0.0


def test_linear_scale_flat_domain_maps_to_baseline():
    y = LinearScale(0, 100)
    assert y(0) == 100
    assert y(50) == 100


def test_viewport_inner_size():
    viewport = Viewport(200, 174)
    assert viewport.inner_width == 112
    assert viewport.inner_height == 100
    assert Viewport(10, 10).inner_height == 1


def test_stack_layout_is_cumulative_in_category_order():
    segments = {s.key: s for s in stack_layout(QUARTERS, CATEGORIES, SERIES)}
    assert (segments[("A", "2020-Q1")].y0, segments[("A", "2020-Q1")].y1) == (0, 30)
    assert (segments[("B", "2020-Q1")].y0, segments[("B", "2020-Q1")].y1) == (30, 100)
    reversed_order = {s.key: s for s in stack_layout(QUARTERS, ("B", "A"), SERIES)}
    assert (reversed_order[("A", "2020-Q2")].y0, reversed_order[("A", "2020-Q2")].y1) == (10, 15)


def test_layout_pixels():
    plan = render_chart(QUARTERS, CATEGORIES, SERIES, color, Viewport(200, 174))
    frame = plan.frame
    assert frame.y_upper == 100
    a = frame.placed[("A", "2020-Q1")]
    b = frame.placed[("B", "2020-Q1")]
    assert a.box.y == pytest.approx(70)
    assert a.box.height == pytest.approx(30)
    assert b.box.y == pytest.approx(0)
    assert b.box.height == pytest.approx(70)
    assert a.fill == "#111111"
    assert a.label.opacity == 1.0
    assert a.label.text == "30"
    assert [t[0] for t in frame.y_ticks] == [0, 20, 40, 60, 80, 100]
    assert frame.y_ticks[-1][1] == pytest.approx(0)


def test_small_segments_hide_labels():
    plan = render_chart(QUARTERS, CATEGORIES, SERIES, color, Viewport(200, 174))
    small = plan.frame.placed[("A", "2020-Q2")]
    assert small.box.height < LABEL_MIN_HEIGHT
    assert small.label.opacity == 0.0


def test_zero_values_render_on_baseline():
    series = (QuarterValues("2020-Q1", {"A": 0, "B": 0}),)
    plan = render_chart(("2020-Q1",), CATEGORIES, series, color, Viewport(200, 174))
    assert plan.frame.y_upper == 0
    for item in plan.frame.placed.values():
        assert item.box.height == 0
        assert item.box.y == 100
        assert item.label.opacity == 0.0


def test_scale_mode_changes_labels():
    series = (QuarterValues("2020-Q1", {"A": 1234567, "B": 0}),)
    plan = render_chart(("2020-Q1",), CATEGORIES, series, color, Viewport(), ScaleMode.THOUSANDS)
    assert plan.frame.placed[("A", "2020-Q1")].label.text == "1'235k"


def test_first_render_enters_from_baseline():
    plan = render_chart(QUARTERS, CATEGORIES, SERIES, color, Viewport(200, 174))
    assert len(plan.entering) == 4
    assert plan.updating == [] and plan.exiting == []
    op = plan.entering[0]
    assert op.start.y == 100 and op.start.height == 0
    assert op.label_start.opacity == 0.0
    assert op.duration_ms == TRANSITION_MS


def test_window_shift_enters_updates_and_exits_by_key():
    first = render_chart(QUARTERS, CATEGORIES, SERIES, color, Viewport(200, 174))
    shifted_series = SERIES[1:] + (QuarterValues("2020-Q3", {"A": 1, "B": 2}),)
    second = render_chart(
        ("2020-Q2", "2020-Q3"), CATEGORIES, shifted_series, color, Viewport(200, 174), previous=first.frame
    )
    assert {op.key for op in second.entering} == {("A", "2020-Q3"), ("B", "2020-Q3")}
    assert {op.key for op in second.updating} == {("A", "2020-Q2"), ("B", "2020-Q2")}
    assert {op.key for op in second.exiting} == {("A", "2020-Q1"), ("B", "2020-Q1")}
    assert all(op.remove for op in second.exiting)
    exit_op = second.exiting[0]
    assert exit_op.end.height == 0 and exit_op.end.y == 100
    update = next(op for op in second.updating if op.key == ("A", "2020-Q2"))
    assert update.start == first.frame.placed[("A", "2020-Q2")].box


def test_tooltip_offsets_and_escapes():
    segment = stack_layout(("2020-Q1",), ("<b>",), (QuarterValues("2020-Q1", {"<b>": 1234567}),))[0]
    tip = tooltip_for(segment, ScaleMode.THOUSANDS, (10, 20))
    assert (tip.x, tip.y) == (22, 32)
    assert tip.value_text == "1'235k"
    assert tip.raw_text == "1'234'567"
    html = tip.to_html()
    assert "&lt;b&gt;" in html
    assert "(raw: 1&#x27;234&#x27;567)" in html


def test_segment_table_rows():
    plan = render_chart(QUARTERS, CATEGORIES, SERIES, color, Viewport(200, 174))
    df = segment_table(plan.frame)
    assert len(df) == 4
    row = df[(df["quarter"] == "2020-Q1") & (df["category"] == "B")].iloc[0]
    assert row["y0"] == 30 and row["y1"] == 100 and row["mid"] == 65
    assert row["order"] == 1


def test_stacked_bar_chart_spec():
    plan = render_chart(QUARTERS, CATEGORIES, SERIES, color, Viewport(200, 174))
    spec = to_vega_spec(stacked_bar_chart(plan))
    assert len(spec["layer"]) == 2
    bar_encoding = spec["layer"][0]["encoding"]
    assert bar_encoding["color"]["scale"]["range"] == ["#111111", "#222222"]
    assert bar_encoding["x"]["sort"] == list(QUARTERS)


def test_windowed_chart_binds_slider(dataset_factory):
    ds = dataset_factory(20)
    spec = to_vega_spec(windowed_chart(ds, list(ds.categories), lambda c: "#123456"))
    params = spec["params"]
    assert params[0]["name"] == "window_start"
    assert params[0]["bind"]["max"] == 8
