from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional, Tuple

from core.data import AggregatedDataset, QuarterValues


WINDOW_SIZE = 12
THOUSANDS_SEPARATOR = "'"


class ScaleMode(str, Enum):
    RAW = "raw"
    THOUSANDS = "thousands"
    MILLIONS = "millions"


SCALE_ALIASES = {
    "raw": ScaleMode.RAW,
    "thousands": ScaleMode.THOUSANDS,
    "k": ScaleMode.THOUSANDS,
    "millions": ScaleMode.MILLIONS,
    "m": ScaleMode.MILLIONS,
}
SCALE_DIVISORS = {ScaleMode.RAW: 1, ScaleMode.THOUSANDS: 1_000, ScaleMode.MILLIONS: 1_000_000}
SCALE_SUFFIXES = {ScaleMode.RAW: "", ScaleMode.THOUSANDS: "k", ScaleMode.MILLIONS: "M"}


def normalize_scale_mode(raw: object) -> ScaleMode:
    if isinstance(raw, ScaleMode):
        return raw
    return SCALE_ALIASES.get(str(raw or "").strip().lower(), ScaleMode.RAW)


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_int(value: float) -> str:
    return f"{round_half_up(value):,}".replace(",", THOUSANDS_SEPARATOR)


def format_by_scale(value: float, mode: ScaleMode = ScaleMode.RAW) -> str:
    mode = normalize_scale_mode(mode)
    return f"{format_int(value / SCALE_DIVISORS[mode])}{SCALE_SUFFIXES[mode]}"


def max_start(quarter_count: int, window_size: int = WINDOW_SIZE) -> int:
    return max(0, quarter_count - window_size)


def clamp_start(start: int, quarter_count: int, window_size: int = WINDOW_SIZE) -> int:
    return max(0, min(max_start(quarter_count, window_size), int(start)))


@dataclass(frozen=True)
class DataWindow:
    start: int
    size: int
    quarters: Tuple[str, ...]
    series: Tuple[QuarterValues, ...]

    @property
    def label(self) -> str:
        first = self.quarters[0] if self.quarters else ""
        last = self.quarters[-1] if self.quarters else ""
        return f"{first} → {last}  (showing {len(self.quarters)}/{self.size})"


def derive_window(dataset: AggregatedDataset, window_start: int, window_size: int = WINDOW_SIZE) -> DataWindow:
    start = clamp_start(window_start, len(dataset.quarters), window_size)
    end = min(len(dataset.quarters), start + window_size)
    return DataWindow(
        start=start,
        size=window_size,
        quarters=tuple(dataset.quarters[start:end]),
        series=tuple(dataset.series[start:end]),
    )


@dataclass
class ViewState:
    """Window position, scale and playback flag of the live chart.

    Idle -> Playing on play(); Playing -> Idle on pause() or when tick()
    reaches the last window. The timer itself lives in the controller.
    """

    window_start: int = 0
    window_size: int = WINDOW_SIZE
    scale_mode: ScaleMode = ScaleMode.RAW
    is_playing: bool = False
    selected_category: Optional[str] = None

    def max_start(self, quarter_count: int) -> int:
        return max_start(quarter_count, self.window_size)

    def at_end(self, quarter_count: int) -> bool:
        return self.window_start >= self.max_start(quarter_count)

    def play_label(self, quarter_count: Optional[int]) -> str:
        if quarter_count is None:
            return "Play"
        return "Replay" if self.at_end(quarter_count) else "Play"

    def play(self, quarter_count: int) -> None:
        if self.at_end(quarter_count):
            self.window_start = 0
        self.is_playing = True

    def tick(self, quarter_count: int) -> bool:
        """Advance one quarter; returns False once the last window is reached."""
        last = self.max_start(quarter_count)
        self.window_start = min(last, self.window_start + 1)
        if self.window_start >= last:
            self.is_playing = False
        return self.is_playing

    def pause(self) -> None:
        self.is_playing = False

    def seek(self, start: int, quarter_count: int) -> None:
        self.pause()
        self.window_start = clamp_start(start, quarter_count, self.window_size)

    def reset(self) -> None:
        self.pause()
        self.window_start = 0
        self.selected_category = None
