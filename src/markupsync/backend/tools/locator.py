import re
from typing import Optional

from ..config import LOCATOR_BASE
from ..models import ImageRef


class LocatorError(ValueError):
    """Raised when a per-image locator does not name an instance and a frame."""


_STUDY_RE = re.compile(r"studies/([^/]+)")
_SERIES_RE = re.compile(r"series/([^/]+)")
_SOP_RE = re.compile(r"instances/([^/]+)")
_FRAME_RE = re.compile(r"frames/(\d+)")


def build_locator(study_uid: str, series_uid: str, sop_uid: str, frame_index: int = 0,
                  base: Optional[str] = None) -> str:
    """Build the viewport locator of one frame.

    ``frame_index`` is 0-based; the locator carries the 1-based frame number
    the imaging endpoint expects.
    """
    if frame_index < 0:
        raise LocatorError(f"Negative frame index: {frame_index}")
    prefix = (base if base is not None else LOCATOR_BASE).rstrip("/")
    return f"{prefix}/studies/{study_uid}/series/{series_uid}/instances/{sop_uid}/frames/{frame_index + 1}"


def parse_locator(locator: str) -> ImageRef:
    """Parse a locator such as ``wadors:/api/wado/studies/S/series/R/instances/I/frames/1``.

    The instance and frame segments are mandatory; study and series are
    returned when present so callers can fall back to their own context.
    """
    if not isinstance(locator, str) or not locator:
        raise LocatorError("Empty image locator")
    sop = _SOP_RE.search(locator)
    frame = _FRAME_RE.search(locator)
    if not sop or not frame:
        raise LocatorError(f"Locator has no instance/frame segment: {locator}")
    frame_number = int(frame.group(1))
    if frame_number < 1:
        raise LocatorError(f"Frame numbers are 1-based, got {frame_number}")
    study = _STUDY_RE.search(locator)
    series = _SERIES_RE.search(locator)
    return ImageRef(
        study_instance_uid=study.group(1) if study else None,
        series_instance_uid=series.group(1) if series else None,
        sop_instance_uid=sop.group(1),
        frame_index=frame_number - 1,
    )
