"""Serialization boundary for the opaque JSON blobs stored by the backend.

The backend keeps points, ROI statistics and annotation style as JSON text
columns next to the structured fields. Encoding is total; decoding returns
either ``Decoded`` or ``DecodeFailure`` so callers decide how to degrade and
tests can observe the failure.
"""

import json
from dataclasses import dataclass
from typing import Any, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from ..models import AnnotationStyle, Point3D, ROIStats

T = TypeVar("T")


@dataclass(frozen=True)
class Decoded(Generic[T]):
    value: T


@dataclass(frozen=True)
class DecodeFailure:
    field: str
    reason: str
    raw: Optional[str] = None


DecodeResult = Union[Decoded[T], DecodeFailure]

_POINTS = TypeAdapter(List[Point3D])
_ROI_STATS = TypeAdapter(Optional[ROIStats])
_STYLE = TypeAdapter(Optional[AnnotationStyle])


def _dump(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def encode_points(points: List[Point3D]) -> str:
    return _dump([p.model_dump() for p in points])


def encode_model(model: Optional[BaseModel]) -> Optional[str]:
    """Encode an optional nested model (ROI stats, style) with camelCase keys."""
    if model is None:
        return None
    return _dump(model.model_dump(by_alias=True, exclude_none=True))


def _decode(field: str, raw: Optional[str], adapter: TypeAdapter) -> DecodeResult:
    if raw is None or raw == "":
        return Decoded(None)
    try:
        return Decoded(adapter.validate_json(raw))
    except ValidationError as e:
        return DecodeFailure(field, f"{e.error_count()} validation error(s): {e.errors()[0]['msg']}", raw)


def decode_points(raw: Optional[str]) -> DecodeResult:
    res = _decode("points", raw, _POINTS)
    if isinstance(res, Decoded) and res.value is None:
        return Decoded([])
    return res


def decode_roi_stats(raw: Optional[str]) -> DecodeResult:
    return _decode("roiStats", raw, _ROI_STATS)


def decode_style(raw: Optional[str]) -> DecodeResult:
    return _decode("style", raw, _STYLE)


def value_or(result: DecodeResult, default: Any = None) -> Any:
    return result.value if isinstance(result, Decoded) else default
