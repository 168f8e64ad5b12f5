from __future__ import annotations

import json
import logging
from typing import Callable, List, Optional

from core.charts import ChartFrame, RenderPlan, Viewport, render_chart
from core.data import AggregatedDataset
from core.playback import PlaybackTimer, Scheduler
from core.preferences import InvalidColorError, PreferenceStore, is_valid_hex_color
from core.view_state import DataWindow, ScaleMode, ViewState, derive_window, normalize_scale_mode


logger = logging.getLogger(__name__)

SNAPSHOT_FILENAME = "published-defaults.json"
EDITOR_FALLBACK_COLOR = "#2563EB"


class ChartController:
    """Owns the dataset, the view state, preferences and the playback timer of one chart.

    Handlers run synchronously. Anything that moves the window cancels a
    pending playback tick before it applies its own change.
    """

    def __init__(
        self,
        preferences: PreferenceStore,
        scheduler: Scheduler,
        viewport: Optional[Viewport] = None,
        on_render: Optional[Callable[[RenderPlan], None]] = None,
    ):
        self.preferences = preferences
        self.view = ViewState()
        self.viewport = viewport or Viewport()
        self.dataset: Optional[AggregatedDataset] = None
        self.status = ""
        self.last_plan: Optional[RenderPlan] = None
        self._timer = PlaybackTimer(scheduler)
        self._on_render = on_render

    # ----- derived values -----
    @property
    def quarter_count(self) -> int:
        return len(self.dataset.quarters) if self.dataset is not None else 0

    @property
    def max_start(self) -> int:
        return self.view.max_start(self.quarter_count)

    @property
    def play_label(self) -> str:
        return self.view.play_label(self.quarter_count if self.dataset is not None else None)

    def ordered_categories(self) -> List[str]:
        if self.dataset is None:
            return []
        return self.preferences.effective_order(self.dataset.categories)

    def color_function(self) -> Callable[[str], str]:
        return self.preferences.color_function(self.ordered_categories())

    def window(self) -> Optional[DataWindow]:
        if self.dataset is None:
            return None
        return derive_window(self.dataset, self.view.window_start, self.view.window_size)

    # ----- loading -----
    def _stop(self) -> None:
        self._timer.cancel()
        self.view.pause()

    def load(self, dataset: AggregatedDataset) -> Optional[RenderPlan]:
        self._stop()
        self.dataset = dataset
        self.view.reset()
        self.status = f"Loaded {len(dataset.series)} quarters from {dataset.excel_path}"
        return self.render()

    def load_from(self, loader: Callable[[], AggregatedDataset], description: str = "Loading…") -> bool:
        """Run a loader; on failure keep the last good dataset and report the error."""
        self._stop()
        self.status = description
        try:
            dataset = loader()
        except Exception as exc:
            logger.warning("Dataset load failed: %s", exc)
            self.status = f"Load failed: {exc}"
            return False
        self.load(dataset)
        return True

    # ----- playback -----
    def play(self) -> None:
        if self.dataset is None:
            return
        self._stop()
        self.view.play(self.quarter_count)
        self.render()
        self._timer.start(self._tick)

    def pause(self) -> None:
        self._stop()

    def _tick(self) -> None:
        if self.dataset is None:
            self._stop()
            return
        still_playing = self.view.tick(self.quarter_count)
        self.render()
        if not still_playing:
            self._timer.cancel()

    # ----- window / viewport -----
    def seek(self, start: int) -> Optional[RenderPlan]:
        self._stop()
        self.view.seek(start, self.quarter_count)
        return self.render()

    def resize(self, width: float, height: float) -> Optional[RenderPlan]:
        self._stop()
        self.viewport = Viewport(width=width, height=height)
        return self.render()

    def visibility_changed(self, hidden: bool) -> None:
        if hidden:
            self._stop()

    def set_scale_mode(self, mode: object) -> Optional[RenderPlan]:
        self.view.scale_mode = normalize_scale_mode(mode)
        return self.render()

    # ----- colors -----
    def select_category(self, category: Optional[str]) -> str:
        """Select a legend entry; returns the color the editor should start from."""
        self.view.selected_category = category
        if category is None:
            return EDITOR_FALLBACK_COLOR
        current = self.color_function()(category)
        return current if is_valid_hex_color(current) else EDITOR_FALLBACK_COLOR

    def apply_color(self, candidate: str) -> bool:
        category = self.view.selected_category
        if self.dataset is None or category is None:
            return False
        try:
            self.preferences.set_color_override(category, candidate)
        except InvalidColorError as exc:
            self.status = str(exc)
            return False
        self.render()
        return True

    def reset_colors(self) -> None:
        self.view.selected_category = None
        self.preferences.clear_color_overrides()
        self.render()

    # ----- order -----
    def move_category(self, source: str, target: str) -> List[str]:
        self._stop()
        if self.dataset is None:
            return []
        order = self.preferences.move_category(self.dataset.categories, source, target)
        self.render()
        return order

    def set_order(self, order: List[str]) -> None:
        self._stop()
        self.preferences.set_order_override(order)
        self.render()

    def reset_order(self) -> None:
        self._stop()
        self.preferences.clear_order_override()
        self.render()

    def export_snapshot(self) -> Optional[str]:
        if self.dataset is None:
            return None
        payload = json.dumps(self.preferences.export_snapshot(), ensure_ascii=False, indent=2)
        self.status = f"Downloaded {SNAPSHOT_FILENAME}. Put it in data/ and rebuild the pages."
        return payload

    # ----- rendering -----
    def render(self) -> Optional[RenderPlan]:
        window = self.window()
        if window is None:
            return None
        categories = self.ordered_categories()
        previous: Optional[ChartFrame] = self.last_plan.frame if self.last_plan is not None else None
        plan = render_chart(
            window.quarters,
            categories,
            window.series,
            self.preferences.color_function(categories),
            self.viewport,
            self.view.scale_mode,
            previous,
        )
        self.last_plan = plan
        if self._on_render is not None:
            self._on_render(plan)
        return plan

    @property
    def scale_mode(self) -> ScaleMode:
        return self.view.scale_mode
