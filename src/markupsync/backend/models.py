from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for models exchanged with the backend or the viewport (camelCase on the wire)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Point3D(WireModel):
    x: float; y: float; z: float = 0.0


class ROIStats(WireModel):
    mean: float
    std_dev: float = 0.0
    min: float = 0.0
    max: float = 0.0
    area: float = 0.0
    perimeter: Optional[float] = None # ROI kinds only
    pixel_count: Optional[int] = None


class TextBoxStyle(WireModel):
    has_moved: Optional[bool] = None
    visible: Optional[bool] = None


class AnnotationStyle(WireModel):
    line_width: Optional[float] = None
    line_dash: Optional[Union[str, List[float]]] = None
    shadow: Optional[bool] = None
    text_box: Optional[TextBoxStyle] = None


MeasurementType = Literal[
    "LENGTH", "ANGLE", "COBB_ANGLE", "RECTANGLE_ROI", "ELLIPSE_ROI",
    "POLYGON_ROI", "FREEHAND_ROI", "BIDIRECTIONAL", "PROBE",
]

AnnotationType = Literal["TEXT", "ARROW", "MARKER", "LINE", "RECTANGLE", "ELLIPSE", "POLYLINE"]


class _ImageKeys(WireModel):
    id: Optional[str] = None
    study_instance_uid: str
    series_instance_uid: str
    sop_instance_uid: str
    frame_index: int = 0 # 0-based
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class _MeasurementFields(_ImageKeys):
    measurement_type: MeasurementType
    tool_name: str
    label: Optional[str] = None
    value: Optional[float] = None
    unit: Optional[str] = None
    color: Optional[str] = None
    visible: bool = True


class _AnnotationFields(_ImageKeys):
    annotation_type: AnnotationType
    tool_name: str
    text: Optional[str] = None
    color: Optional[str] = None
    font_size: Optional[int] = None
    visible: bool = True
    locked: bool = False


# Canonical records, as used in-process
class Measurement(_MeasurementFields):
    points: List[Point3D] = Field(default_factory=list)
    roi_stats: Optional[ROIStats] = None


class Annotation(_AnnotationFields):
    points: List[Point3D] = Field(default_factory=list)
    style: Optional[AnnotationStyle] = None


# Backend wire records: geometry/stats/style travel as opaque JSON strings
class MeasurementRecord(_MeasurementFields):
    image_id: Optional[str] = None
    points_json: str = "[]"
    roi_stats_json: Optional[str] = None


class AnnotationRecord(_AnnotationFields):
    image_id: Optional[str] = None
    points_json: str = "[]"
    style_json: Optional[str] = None


class KeyImage(_ImageKeys):
    instance_number: Optional[int] = None
    description: Optional[str] = None
    category: Optional[str] = None
    window_width: Optional[float] = None
    window_center: Optional[float] = None


class KeyImageToggleResult(WireModel):
    action: Literal["added", "removed"]
    is_key_image: bool
    key_image: Optional[KeyImage] = None


# Viewport side
class ImageRef(BaseModel):
    study_instance_uid: Optional[str] = None
    series_instance_uid: Optional[str] = None
    sop_instance_uid: str
    frame_index: int = 0


class MarkupEvent(WireModel):
    markup_uid: str = Field(alias="markupUID")
    tool_kind: str
    data: Dict[str, Any] = Field(default_factory=dict)
    image_locator: Optional[str] = None
    styles: Optional[Dict[str, Any]] = None


class ViewportMarkup(WireModel):
    markup_uid: str = Field(alias="markupUID")
    tool_kind: str
    image_locator: str
    handles: Dict[str, Any]
    text: Optional[str] = None
    style: Optional[Dict[str, Any]] = None
    color: Optional[str] = None
    cached_stats: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    visible: bool = True
    locked: bool = False


class ArrayPoints(BaseModel):
    kind: Literal["array"] = "array"
    points: List[Any]


class NamedHandles(BaseModel):
    kind: Literal["named"] = "named"
    handles: Dict[str, Any]


HandlePayload = Union[ArrayPoints, NamedHandles]
