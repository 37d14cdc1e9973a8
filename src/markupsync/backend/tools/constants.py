"""Shared tool classification constants.

Centralizes which viewport tool kinds produce measurements and which produce
annotations so that capture, restore and tests do not drift. The two
partitions are disjoint; any other kind (pan, zoom, window/level, scroll, ...)
is never persisted.
"""

from __future__ import annotations

from typing import Optional

MEASUREMENT_TOOLS: dict[str, str] = {
    "Length": "LENGTH",
    "Angle": "ANGLE",
    "CobbAngle": "COBB_ANGLE",
    "RectangleROI": "RECTANGLE_ROI",
    "EllipticalROI": "ELLIPSE_ROI",
    "CircleROI": "ELLIPSE_ROI",
    "Bidirectional": "BIDIRECTIONAL",
    "Probe": "PROBE",
    "SplineROI": "FREEHAND_ROI",
    "LivewireContour": "POLYGON_ROI",
}

ANNOTATION_TOOLS: dict[str, str] = {
    "ArrowAnnotate": "ARROW",
    "TextMarker": "TEXT",
    "Label": "TEXT",
    "PlanarFreehandROI": "POLYLINE",
}

# (min, max) handle count accepted when rebuilding tool-native markup; None = unbounded
POINT_CARDINALITY: dict[str, tuple[int, Optional[int]]] = {
    "Length": (2, 2),
    "Angle": (3, None),
    "CobbAngle": (3, None),
    "RectangleROI": (2, 2),
    "EllipticalROI": (2, 2),
    "CircleROI": (2, 2),
    "Bidirectional": (4, 4),
    "Probe": (1, 1),
    "SplineROI": (2, None),
    "LivewireContour": (3, None),
    "ArrowAnnotate": (2, 2),
    "TextMarker": (1, None),
    "Label": (1, None),
    "PlanarFreehandROI": (2, None),
}

# Bookkeeping entries of a named-handle layout that are not points
RESERVED_HANDLE_KEYS: frozenset[str] = frozenset({"textBox", "activeHandleIndex"})

# Units assigned to the scalar result, in lookup order (first match wins)
VALUE_FIELDS: tuple[tuple[str, str], ...] = (
    ("length", "mm"),
    ("angle", "°"),
    ("area", "mm²"),
)


def is_measurement_tool(name: str) -> bool:
    return name in MEASUREMENT_TOOLS


def is_annotation_tool(name: str) -> bool:
    return name in ANNOTATION_TOOLS


def is_markup_tool(name: str) -> bool:
    return is_measurement_tool(name) or is_annotation_tool(name)
