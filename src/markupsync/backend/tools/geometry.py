import math
from numbers import Real
from typing import Any, Dict, List, Optional, Sequence

from ..models import ArrayPoints, HandlePayload, NamedHandles, Point3D
from .constants import POINT_CARDINALITY, RESERVED_HANDLE_KEYS


def is_number(v: Any) -> bool:
    return isinstance(v, Real) and not isinstance(v, bool) and math.isfinite(v)


def _to_point(coords: Any) -> Optional[Point3D]:
    """Coerce an ``[x, y]`` / ``[x, y, z]`` triple into a Point3D, or None if unusable."""
    if not isinstance(coords, (list, tuple)) or len(coords) < 2:
        return None
    if not (is_number(coords[0]) and is_number(coords[1])):
        return None
    z = coords[2] if len(coords) > 2 and is_number(coords[2]) else 0.0
    return Point3D(x=coords[0], y=coords[1], z=z)


def classify_handles(handles: Any) -> Optional[HandlePayload]:
    """Tag a tool's raw handle structure as array-style or named-handle style.

    An array-valued ``points`` entry wins; otherwise every non-reserved entry
    is a named handle. Anything that is not a mapping yields None.
    """
    if not isinstance(handles, dict):
        return None
    pts = handles.get("points")
    if isinstance(pts, (list, tuple)):
        return ArrayPoints(points=list(pts))
    named = {k: v for k, v in handles.items() if k not in RESERVED_HANDLE_KEYS}
    return NamedHandles(handles=named)


def normalize_handles(handles: Any) -> List[Point3D]:
    """Convert a tool's handle structure into an ordered list of points.

    Pure and deterministic. Malformed entries are skipped; an empty result
    tells the caller to drop the markup.
    """
    payload = classify_handles(handles)
    if isinstance(payload, ArrayPoints):
        candidates = payload.points
    elif isinstance(payload, NamedHandles):
        candidates = list(payload.handles.values())
    else:
        return []
    points = []
    for c in candidates:
        p = _to_point(c)
        if p is not None:
            points.append(p)
    return points


def handles_from_points(points: Sequence[Point3D]) -> Dict[str, Any]:
    """Inverse of normalize_handles for the array-style layout.

    Named-handle tools are restored with the same array layout; the viewport
    accepts it uniformly.
    """
    return {"points": [[p.x, p.y, p.z] for p in points]}


def check_cardinality(tool_kind: str, points: Sequence[Point3D]) -> List[Point3D]:
    """Validate a stored point list against the tool's handle count.

    Raises ValueError for unknown tool kinds or too few points; points past the
    tool's maximum are dropped.
    """
    if tool_kind not in POINT_CARDINALITY:
        raise ValueError(f"Unknown tool kind: {tool_kind}")
    lo, hi = POINT_CARDINALITY[tool_kind]
    if len(points) < lo:
        raise ValueError(f"{tool_kind} needs at least {lo} point(s), got {len(points)}")
    if hi is not None:
        return list(points[:hi])
    return list(points)
