from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple


logger = logging.getLogger(__name__)

COLOR_STORAGE_KEY = "quarter-chart.colorsByCategory.v1"
ORDER_STORAGE_KEY = "quarter-chart.categoryOrder.v1"
PREFS_PATH = Path(os.environ.get("QUARTER_CHART_PREFS", "~/.quarter_chart/preferences.json")).expanduser()
FALLBACK_COLOR = "#999999"
DEFAULT_PROFILE = "default"
HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")
PROFILE_UNSAFE = re.compile(r"[^A-Za-z0-9_-]+")


class InvalidColorError(ValueError):
    def __init__(self, message: str = "Invalid color. Use #RRGGBB."):
        super().__init__(message)


def is_valid_hex_color(value: object) -> bool:
    return isinstance(value, str) and bool(HEX_COLOR.match(value.strip()))


def normalize_hex_color(value: object) -> Optional[str]:
    if not is_valid_hex_color(value):
        return None
    return str(value).strip().upper()


def turbo_color(t: float) -> str:
    """Turbo colormap, polynomial approximation (same coefficients as d3.interpolateTurbo)."""
    t = max(0.0, min(1.0, t))
    r = 34.61 + t * (1172.33 - t * (10793.56 - t * (33300.12 - t * (38394.49 - t * 14825.05))))
    g = 23.31 + t * (557.33 + t * (1225.33 - t * (3574.96 - t * (1073.77 + t * 707.56))))
    b = 27.2 + t * (3211.1 - t * (15327.97 - t * (27814 - t * (22569.18 - t * 6838.66))))
    channels = [max(0, min(255, int(round(c)))) for c in (r, g, b)]
    return "#" + "".join(f"{c:02X}" for c in channels)


def sweep_colors(categories: Sequence[str]) -> Dict[str, str]:
    n = len(categories)
    return {cat: turbo_color(0.15 + 0.7 * (i / max(1, n - 1))) for i, cat in enumerate(categories)}


# ---------------- Storage ----------------
class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self, items: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileStorage:
    """String key/value pairs in one JSON file, written through on every change."""

    def __init__(self, path: Path = PREFS_PATH):
        self.path = Path(path)

    def _read_all(self) -> Dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("Cannot read preferences %s: %s", self.path, exc)
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed preferences file %s", self.path)
            return {}
        if not isinstance(parsed, dict):
            return {}
        return {str(k): v for k, v in parsed.items() if isinstance(v, str)}

    def _write_all(self, items: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".prefs-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(items, fh, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get_item(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        items = self._read_all()
        items[key] = value
        self._write_all(items)

    def remove_item(self, key: str) -> None:
        items = self._read_all()
        if key in items:
            del items[key]
            self._write_all(items)


def prefs_path_for(profile: Optional[str], base: Path = PREFS_PATH) -> Path:
    """One preferences file per profile; the default profile uses the base file."""
    slug = PROFILE_UNSAFE.sub("-", (profile or "").strip()).strip("-")[:64]
    if not slug or slug == DEFAULT_PROFILE:
        return base
    return base.with_name(f"{base.stem}-{slug}{base.suffix}")


# ---------------- Published defaults ----------------
@dataclass(frozen=True)
class PreferenceDefaults:
    colors_by_category: Dict[str, str] = field(default_factory=dict)
    category_order: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"colorsByCategory": dict(self.colors_by_category), "categoryOrder": list(self.category_order)}


def _sanitize_colors(raw: object) -> Dict[str, str]:
    if not isinstance(raw, Mapping):
        return {}
    out: Dict[str, str] = {}
    for k, v in raw.items():
        color = normalize_hex_color(v)
        if isinstance(k, str) and color is not None:
            out[k] = color
    return out


def _sanitize_order(raw: object) -> List[str]:
    if not isinstance(raw, list):
        return []
    return [x for x in raw if isinstance(x, str)]


def sanitize_published_defaults(payload: object) -> PreferenceDefaults:
    if not isinstance(payload, Mapping):
        return PreferenceDefaults()
    return PreferenceDefaults(
        colors_by_category=_sanitize_colors(payload.get("colorsByCategory")),
        category_order=tuple(_sanitize_order(payload.get("categoryOrder"))),
    )


def load_published_defaults(path: Optional[Path]) -> PreferenceDefaults:
    if path is None:
        return PreferenceDefaults()
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.debug("No published defaults at %s", path)
        return PreferenceDefaults()
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring published defaults %s: %s", path, exc)
        return PreferenceDefaults()
    return sanitize_published_defaults(payload)


# ---------------- Store ----------------
def merge_order(categories: Sequence[str], preferred: Sequence[str]) -> List[str]:
    known = set(categories)
    ordered: List[str] = []
    seen = set()
    for k in preferred:
        if k in known and k not in seen:
            ordered.append(k)
            seen.add(k)
    ordered.extend(k for k in categories if k not in seen)
    return ordered


class PreferenceStore:
    """User overrides > published defaults > computed defaults, for colors and category order."""

    def __init__(self, storage: KeyValueStorage, published: Optional[PreferenceDefaults] = None):
        self.storage = storage
        self.published = published or PreferenceDefaults()

    def _read_json(self, key: str) -> Any:
        raw = self.storage.get_item(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed stored preference %s", key)
            return None

    def color_overrides(self) -> Dict[str, str]:
        return _sanitize_colors(self._read_json(COLOR_STORAGE_KEY))

    def order_override(self) -> List[str]:
        return _sanitize_order(self._read_json(ORDER_STORAGE_KEY))

    def color_tiers(self, categories: Sequence[str]) -> List[Mapping[str, str]]:
        return [self.color_overrides(), self.published.colors_by_category, sweep_colors(categories)]

    def order_tiers(self) -> List[Sequence[str]]:
        return [self.order_override(), self.published.category_order]

    def color_function(self, categories: Sequence[str]) -> Callable[[str], str]:
        tiers = self.color_tiers(categories)

        def color(category: str) -> str:
            for tier in tiers:
                value = tier.get(category)
                if value is not None:
                    return value
            return FALLBACK_COLOR

        return color

    def effective_color(self, category: str, categories: Sequence[str] = ()) -> str:
        return self.color_function(categories)(category)

    def effective_order(self, categories: Sequence[str]) -> List[str]:
        for tier in self.order_tiers():
            if tier:
                return merge_order(categories, tier)
        return list(categories)

    def set_color_override(self, category: str, color: str) -> str:
        normalized = normalize_hex_color(color)
        if normalized is None:
            raise InvalidColorError()
        overrides = self.color_overrides()
        overrides[category] = normalized
        self.storage.set_item(COLOR_STORAGE_KEY, json.dumps(overrides, ensure_ascii=False))
        return normalized

    def clear_color_overrides(self) -> None:
        self.storage.set_item(COLOR_STORAGE_KEY, json.dumps({}))

    def set_order_override(self, order: Sequence[str]) -> None:
        if not order:
            self.clear_order_override()
            return
        self.storage.set_item(ORDER_STORAGE_KEY, json.dumps(list(order), ensure_ascii=False))

    def clear_order_override(self) -> None:
        self.storage.set_item(ORDER_STORAGE_KEY, json.dumps([]))

    def move_category(self, categories: Sequence[str], source: str, target: str) -> List[str]:
        current = self.effective_order(categories)
        if source == target or source not in current or target not in current:
            return current
        to_idx = current.index(target)
        current.remove(source)
        current.insert(to_idx, source)
        self.set_order_override(current)
        return current

    def export_snapshot(self) -> Dict[str, Any]:
        return {"colorsByCategory": self.color_overrides(), "categoryOrder": self.order_override()}
