"""Read measurement results out of a tool's cached statistics.

Viewport tools keep their computed results in a ``cachedStats`` mapping keyed
by image locator. A tool renders against one image at a time, so normally a
single entry is present; extra entries are tolerated and the first usable one
wins. Nothing in here raises: malformed input simply yields ``None``.
"""

from typing import Any, Dict, Optional, Tuple

from ..models import Measurement, ROIStats
from .constants import VALUE_FIELDS
from .geometry import is_number


def _entries(cached_stats: Any):
    if not isinstance(cached_stats, dict):
        return []
    return [v for v in cached_stats.values() if isinstance(v, dict)]


def _num(stats: dict, *keys: str, default: Optional[float] = 0.0) -> Optional[float]:
    for k in keys:
        v = stats.get(k)
        if is_number(v):
            return v
    return default


def extract_roi_stats(cached_stats: Any) -> Optional[ROIStats]:
    for stats in _entries(cached_stats):
        if not is_number(stats.get("mean")):
            continue
        pixel_count = stats.get("pixelCount")
        return ROIStats(
            mean=stats["mean"],
            std_dev=_num(stats, "stdDev", "Std"),
            min=_num(stats, "min"),
            max=_num(stats, "max"),
            area=_num(stats, "area"),
            perimeter=_num(stats, "perimeter", default=None),
            pixel_count=int(pixel_count) if is_number(pixel_count) else None,
        )
    return None


def extract_value(cached_stats: Any) -> Tuple[Optional[float], Optional[str]]:
    """Return the single scalar ``(value, unit)`` of a measurement.

    Lookup order is length, then angle, then area. Probe and annotation-only
    tools legitimately have none of them.
    """
    for stats in _entries(cached_stats):
        for key, unit in VALUE_FIELDS:
            v = stats.get(key)
            if is_number(v):
                return float(v), unit
    return None, None


def cached_stats_from_record(measurement: Measurement, locator: str) -> Dict[str, Dict[str, float]]:
    """Rebuild the ``cachedStats`` entry a restored tool should display."""
    entry: Dict[str, float] = {}
    if measurement.roi_stats is not None:
        rs = measurement.roi_stats
        entry.update(mean=rs.mean, stdDev=rs.std_dev, min=rs.min, max=rs.max, area=rs.area)
    if measurement.value is not None:
        for key, unit in VALUE_FIELDS:
            if measurement.unit == unit:
                entry[key] = measurement.value
                break
    return {locator: entry} if entry else {}
