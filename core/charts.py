from __future__ import annotations

import html
import math
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import altair as alt
import pandas as pd

from core.data import AggregatedDataset, QuarterValues
from core.view_state import WINDOW_SIZE, ScaleMode, SCALE_DIVISORS, SCALE_SUFFIXES, format_by_scale, format_int, max_start

alt.data_transformers.disable_max_rows()

MARGIN = {"top": 18, "right": 18, "bottom": 56, "left": 70}
BAND_PADDING = 0.18
TRANSITION_MS = 520
TRANSITION_EASE = "cubic-in-out"
LABEL_MIN_HEIGHT = 14
Y_TICK_COUNT = 6
NICE_TICK_COUNT = 10
X_LABEL_ANGLE = -35
TOOLTIP_OFFSET = 12
CORNER_RADIUS = 3

E10 = math.sqrt(50)
E5 = math.sqrt(10)
E2 = math.sqrt(2)

SegmentKey = Tuple[str, str]
ColorFn = Callable[[str], str]


def to_vega_spec(chart: alt.TopLevelMixin) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


# ---------------- Scales ----------------
def tick_increment(start: float, stop: float, count: int) -> float:
    step = (stop - start) / max(1, count)
    power = math.floor(math.log10(step))
    error = step / 10 ** power
    factor = 10 if error >= E10 else 5 if error >= E5 else 2 if error >= E2 else 1
    if power >= 0:
        return factor * 10 ** power
    return -(10 ** -power) / factor


def nice_upper_bound(value: float, count: int = NICE_TICK_COUNT) -> float:
    """Round the top of a [0, value] domain up to a tick boundary, like d3's linear.nice()."""
    if not math.isfinite(value) or value <= 0:
        return 0.0
    start, stop = 0.0, float(value)
    previous = None
    for _ in range(10):
        step = tick_increment(start, stop, count)
        if step == previous:
            break
        if step > 0:
            start = math.floor(start / step) * step
            stop = math.ceil(stop / step) * step
        elif step < 0:
            start = math.ceil(start * step) / step
            stop = math.floor(stop * step) / step
        else:
            break
        previous = step
    return stop


def linear_ticks(stop: float, count: int = Y_TICK_COUNT) -> List[float]:
    if stop <= 0:
        return [0.0]
    # Round, then step back if the rounded tick overshoots, as d3.ticks does.
    inc = tick_increment(0.0, stop, count)
    if inc > 0:
        last = int(round(stop / inc))
        if last * inc > stop:
            last -= 1
        return [i * inc for i in range(0, last + 1)]
    inc = -inc
    last = int(round(stop * inc))
    if last / inc > stop:
        last -= 1
    return [i / inc for i in range(0, last + 1)]


@dataclass(frozen=True)
class BandScale:
    domain: Tuple[str, ...]
    extent: float
    padding: float = BAND_PADDING

    @property
    def step(self) -> float:
        return self.extent / max(1.0, len(self.domain) - self.padding + self.padding * 2)

    @property
    def bandwidth(self) -> float:
        return self.step * (1 - self.padding)

    def __call__(self, value: str) -> float:
        offset = (self.extent - self.step * (len(self.domain) - self.padding)) * 0.5
        try:
            return offset + self.step * self.domain.index(value)
        except ValueError:
            return 0.0


@dataclass(frozen=True)
class LinearScale:
    upper: float
    extent: float

    def __call__(self, value: float) -> float:
        # A flat [0, 0] domain puts everything on the baseline.
        if self.upper <= 0:
            return self.extent
        return self.extent - (value / self.upper) * self.extent


# ---------------- Layout ----------------
@dataclass(frozen=True)
class Viewport:
    width: float = 960
    height: float = 520

    @property
    def inner_width(self) -> float:
        return max(1.0, self.width - MARGIN["left"] - MARGIN["right"])

    @property
    def inner_height(self) -> float:
        return max(1.0, self.height - MARGIN["top"] - MARGIN["bottom"])


@dataclass(frozen=True)
class StackedSegment:
    category: str
    quarter: str
    value: float
    y0: float
    y1: float

    @property
    def key(self) -> SegmentKey:
        return self.category, self.quarter


def stack_layout(quarters: Sequence[str], categories: Sequence[str], series: Sequence[QuarterValues]) -> List[StackedSegment]:
    """Cumulative [y0, y1) bands per quarter, stacked in category order; returned layer by layer."""
    by_quarter = {s.quarter: s.values for s in series}
    bands: Dict[SegmentKey, StackedSegment] = {}
    for quarter in quarters:
        values = by_quarter.get(quarter, {})
        base = 0.0
        for category in categories:
            value = values.get(category, 0) or 0
            bands[(category, quarter)] = StackedSegment(category, quarter, value, base, base + value)
            base += value
    return [bands[(c, q)] for c in categories for q in quarters]


@dataclass(frozen=True)
class Box:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class LabelBox:
    x: float
    y: float
    opacity: float
    text: str


@dataclass(frozen=True)
class PlacedSegment:
    segment: StackedSegment
    fill: str
    box: Box
    label: LabelBox


@dataclass(frozen=True)
class ChartFrame:
    viewport: Viewport
    quarters: Tuple[str, ...]
    categories: Tuple[str, ...]
    placed: Dict[SegmentKey, PlacedSegment]
    y_upper: float
    y_ticks: Tuple[Tuple[float, float, str], ...]
    x_ticks: Tuple[Tuple[str, float], ...]


@dataclass(frozen=True)
class DrawOp:
    role: str
    key: SegmentKey
    fill: str
    start: Box
    end: Box
    label_start: LabelBox
    label_end: LabelBox
    remove: bool = False
    duration_ms: int = TRANSITION_MS
    ease: str = TRANSITION_EASE


@dataclass(frozen=True)
class RenderPlan:
    frame: ChartFrame
    ops: Tuple[DrawOp, ...]

    def by_role(self, role: str) -> List[DrawOp]:
        return [op for op in self.ops if op.role == role]

    @property
    def entering(self) -> List[DrawOp]:
        return self.by_role("enter")

    @property
    def updating(self) -> List[DrawOp]:
        return self.by_role("update")

    @property
    def exiting(self) -> List[DrawOp]:
        return self.by_role("exit")


def label_opacity(value: float, pixel_height: float) -> float:
    return 1.0 if value > 0 and pixel_height >= LABEL_MIN_HEIGHT else 0.0


def layout_frame(
    quarters: Sequence[str],
    categories: Sequence[str],
    series: Sequence[QuarterValues],
    color: ColorFn,
    viewport: Viewport,
    scale_mode: ScaleMode = ScaleMode.RAW,
) -> ChartFrame:
    segments = stack_layout(quarters, categories, series)
    inner_h = viewport.inner_height
    x = BandScale(tuple(quarters), viewport.inner_width)
    y_upper = nice_upper_bound(max((s.y1 for s in segments), default=0.0))
    y = LinearScale(y_upper, inner_h)

    placed: Dict[SegmentKey, PlacedSegment] = {}
    for seg in segments:
        top, bottom = y(seg.y1), y(seg.y0)
        left = x(seg.quarter)
        box = Box(x=left, y=top, width=x.bandwidth, height=max(0.0, bottom - top))
        label = LabelBox(
            x=left + x.bandwidth / 2,
            y=(top + bottom) / 2,
            opacity=label_opacity(seg.value, bottom - top),
            text=format_by_scale(seg.value, scale_mode),
        )
        placed[seg.key] = PlacedSegment(segment=seg, fill=color(seg.category), box=box, label=label)

    y_ticks = tuple((v, y(v), format_by_scale(v, scale_mode)) for v in linear_ticks(y_upper))
    x_ticks = tuple((q, x(q) + x.bandwidth / 2) for q in quarters)
    return ChartFrame(
        viewport=viewport,
        quarters=tuple(quarters),
        categories=tuple(categories),
        placed=placed,
        y_upper=y_upper,
        y_ticks=y_ticks,
        x_ticks=x_ticks,
    )


def reconcile(frame: ChartFrame, previous: Optional[ChartFrame] = None) -> Tuple[DrawOp, ...]:
    """Diff two frames by (category, quarter) and describe the enter/update/exit transitions."""
    baseline = frame.viewport.inner_height
    before = previous.placed if previous is not None else {}
    ops: List[DrawOp] = []
    for key, item in frame.placed.items():
        old = before.get(key)
        if old is None:
            ops.append(
                DrawOp(
                    role="enter",
                    key=key,
                    fill=item.fill,
                    start=replace(item.box, y=baseline, height=0.0),
                    end=item.box,
                    label_start=replace(item.label, y=baseline, opacity=0.0),
                    label_end=item.label,
                )
            )
        else:
            ops.append(
                DrawOp(
                    role="update",
                    key=key,
                    fill=item.fill,
                    start=old.box,
                    end=item.box,
                    label_start=replace(old.label, text=item.label.text),
                    label_end=item.label,
                )
            )
    for key, old in before.items():
        if key in frame.placed:
            continue
        ops.append(
            DrawOp(
                role="exit",
                key=key,
                fill=old.fill,
                start=old.box,
                end=replace(old.box, y=baseline, height=0.0),
                label_start=old.label,
                label_end=replace(old.label, y=baseline, opacity=0.0),
                remove=True,
            )
        )
    return tuple(ops)


def render_chart(
    quarters: Sequence[str],
    categories: Sequence[str],
    series: Sequence[QuarterValues],
    color: ColorFn,
    viewport: Viewport,
    scale_mode: ScaleMode = ScaleMode.RAW,
    previous: Optional[ChartFrame] = None,
) -> RenderPlan:
    frame = layout_frame(quarters, categories, series, color, viewport, scale_mode)
    return RenderPlan(frame=frame, ops=reconcile(frame, previous))


# ---------------- Tooltip ----------------
@dataclass(frozen=True)
class Tooltip:
    quarter: str
    category: str
    value_text: str
    raw_text: str
    x: float
    y: float

    def to_html(self) -> str:
        return (
            f'<div style="font-weight:600; margin-bottom:4px;">{html.escape(self.quarter)}</div>'
            f'<div><span style="opacity:0.8">Kategorie:</span> {html.escape(self.category)}</div>'
            f'<div><span style="opacity:0.8">Wert:</span> {html.escape(self.value_text)}</div>'
            f'<div style="opacity:0.75">(raw: {html.escape(self.raw_text)})</div>'
        )


def tooltip_for(segment: StackedSegment, scale_mode: ScaleMode, pointer: Tuple[float, float]) -> Tooltip:
    return Tooltip(
        quarter=segment.quarter,
        category=segment.category,
        value_text=format_by_scale(segment.value, scale_mode),
        raw_text=format_int(segment.value),
        x=pointer[0] + TOOLTIP_OFFSET,
        y=pointer[1] + TOOLTIP_OFFSET,
    )


def legend_html(categories: Sequence[str], color: ColorFn) -> str:
    return "".join(
        f"<div class='legend-row'><div class='swatch' style='background:{html.escape(color(k))}'></div>"
        f"<div>{html.escape(k)}</div></div>"
        for k in categories
    )


# ---------------- Altair ----------------
def _axis_label_expr(scale_mode: ScaleMode) -> str:
    divisor = SCALE_DIVISORS[scale_mode]
    suffix = SCALE_SUFFIXES[scale_mode]
    return f"replace(format(datum.value / {divisor}, ',.0f'), regexp(',', 'g'), \"'\") + '{suffix}'"


def segment_table(frame: ChartFrame, scale_mode: ScaleMode = ScaleMode.RAW) -> pd.DataFrame:
    rows = []
    order = {c: i for i, c in enumerate(frame.categories)}
    for item in frame.placed.values():
        seg = item.segment
        rows.append(
            {
                "quarter": seg.quarter,
                "category": seg.category,
                "order": order[seg.category],
                "value": seg.value,
                "y0": seg.y0,
                "y1": seg.y1,
                "mid": (seg.y0 + seg.y1) / 2,
                "scaled": format_by_scale(seg.value, scale_mode),
                "raw": format_int(seg.value),
                "label_opacity": item.label.opacity,
            }
        )
    return pd.DataFrame(
        rows, columns=["quarter", "category", "order", "value", "y0", "y1", "mid", "scaled", "raw", "label_opacity"]
    )


def _color_scale(categories: Sequence[str], color: ColorFn) -> alt.Scale:
    return alt.Scale(domain=list(categories), range=[color(c) for c in categories])


def _tooltips() -> List[alt.Tooltip]:
    return [
        alt.Tooltip("quarter:N", title="Quartal"),
        alt.Tooltip("category:N", title="Kategorie"),
        alt.Tooltip("scaled:N", title="Wert"),
        alt.Tooltip("raw:N", title="raw"),
    ]


def stacked_bar_chart(plan: RenderPlan, scale_mode: ScaleMode = ScaleMode.RAW) -> alt.LayerChart:
    frame = plan.frame
    df = segment_table(frame, scale_mode)
    fills = {key[0]: item.fill for key, item in frame.placed.items()}
    x = alt.X(
        "quarter:N",
        sort=list(frame.quarters),
        title=None,
        scale=alt.Scale(paddingInner=BAND_PADDING, paddingOuter=BAND_PADDING),
        axis=alt.Axis(labelAngle=X_LABEL_ANGLE, labelFontSize=11),
    )
    y = alt.Y(
        "y0:Q",
        title=None,
        scale=alt.Scale(domain=[0, frame.y_upper or 1], nice=False),
        axis=alt.Axis(values=[t[0] for t in frame.y_ticks], labelExpr=_axis_label_expr(scale_mode), labelFontSize=11),
    )
    base = alt.Chart(df)
    bars = base.mark_bar(cornerRadius=CORNER_RADIUS).encode(
        x=x,
        y=y,
        y2="y1:Q",
        color=alt.Color(
            "category:N",
            scale=_color_scale(frame.categories, lambda c: fills.get(c, "#999999")),
            legend=alt.Legend(title=None, orient="bottom"),
        ),
        order=alt.Order("order:Q"),
        tooltip=_tooltips(),
    )
    labels = base.mark_text(fontSize=11, fontWeight=600, color="white").encode(
        x=x,
        y=alt.Y("mid:Q", scale=alt.Scale(domain=[0, frame.y_upper or 1], nice=False)),
        text="scaled:N",
        opacity=alt.Opacity("label_opacity:Q", scale=None),
    )
    inner_h = frame.viewport.inner_height
    return alt.layer(bars, labels).properties(height=inner_h)


def windowed_chart(
    dataset: AggregatedDataset,
    categories: Sequence[str],
    color: ColorFn,
    scale_mode: ScaleMode = ScaleMode.RAW,
    window_size: int = WINDOW_SIZE,
) -> alt.Chart:
    """Standalone chart of the whole dataset with a range slider picking the visible window."""
    index = {q: i for i, q in enumerate(dataset.quarters)}
    rows = []
    for seg in stack_layout(dataset.quarters, categories, dataset.series):
        rows.append(
            {
                "quarter": seg.quarter,
                "quarter_index": index[seg.quarter],
                "category": seg.category,
                "order": list(categories).index(seg.category),
                "y0": seg.y0,
                "y1": seg.y1,
                "scaled": format_by_scale(seg.value, scale_mode),
                "raw": format_int(seg.value),
            }
        )
    df = pd.DataFrame(rows)
    window_start = alt.param(
        name="window_start",
        value=0,
        bind=alt.binding_range(min=0, max=max_start(len(dataset.quarters), window_size), step=1, name="Window start "),
    )
    return (
        alt.Chart(df)
        .mark_bar(cornerRadius=CORNER_RADIUS)
        .encode(
            x=alt.X(
                "quarter:N",
                sort=alt.EncodingSortField(field="quarter_index", op="min"),
                title=None,
                axis=alt.Axis(labelAngle=X_LABEL_ANGLE),
            ),
            y=alt.Y("y0:Q", title=None, axis=alt.Axis(labelExpr=_axis_label_expr(scale_mode))),
            y2="y1:Q",
            color=alt.Color("category:N", scale=_color_scale(categories, color), legend=alt.Legend(title=None, orient="bottom")),
            order=alt.Order("order:Q"),
            tooltip=_tooltips(),
        )
        .add_params(window_start)
        .transform_filter(f"datum.quarter_index >= window_start && datum.quarter_index < window_start + {window_size}")
        .properties(width="container", height=420)
    )
