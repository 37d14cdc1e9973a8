"""Capture of completed viewport markup into canonical records.

One ``CaptureListener`` exists per open study. It subscribes to the
viewport's "markup completed" channel, turns each completed measurement or
annotation into a canonical record and persists it through the API client.

Persistence policy: a markup UID enters the saved set only after the backend
accepted it, so a failed create can be retried when the viewport re-fires the
event. UIDs with a create still in flight are ignored too, which keeps the
guarantee at most one successful persist per markup.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set, Union

from pydantic import ValidationError

from .models import Annotation, AnnotationStyle, MarkupEvent, Measurement, TextBoxStyle
from .tools.constants import ANNOTATION_TOOLS, MEASUREMENT_TOOLS
from .tools.geometry import is_number, normalize_handles
from .tools.locator import LocatorError, parse_locator
from .tools.stats import extract_roi_stats, extract_value
from .tools.viewport_state import Viewport

logger = logging.getLogger(__name__)

Markup = Union[Measurement, Annotation]


def extract_text(data: Dict[str, Any]) -> Optional[str]:
    """Text of a text-bearing annotation: ``text``, then the text box, then ``label``."""
    if isinstance(data.get("text"), str) and data["text"]:
        return data["text"]
    handles = data.get("handles")
    if isinstance(handles, dict) and isinstance(handles.get("textBox"), dict):
        text = handles["textBox"].get("text")
        if isinstance(text, str) and text:
            return text
    if isinstance(data.get("label"), str) and data["label"]:
        return data["label"]
    return None


def extract_style(styles: Optional[Dict[str, Any]]) -> Optional[AnnotationStyle]:
    if not isinstance(styles, dict):
        return None
    line_dash = styles.get("lineDash")
    if isinstance(line_dash, (list, tuple)):
        line_dash = [d for d in line_dash if is_number(d)]
    elif not isinstance(line_dash, str):
        line_dash = None
    text_box = styles.get("textBox")
    if isinstance(text_box, dict):
        text_box = TextBoxStyle(
            has_moved=text_box.get("hasMoved") if isinstance(text_box.get("hasMoved"), bool) else None,
            visible=text_box.get("visible") if isinstance(text_box.get("visible"), bool) else None,
        )
    else:
        text_box = None
    style = AnnotationStyle(
        line_width=styles.get("lineWidth") if is_number(styles.get("lineWidth")) else None,
        line_dash=line_dash,
        shadow=styles.get("shadow") if isinstance(styles.get("shadow"), bool) else None,
        text_box=text_box,
    )
    if not style.model_dump(exclude_none=True):
        return None
    return style


class CaptureListener:
    def __init__(self, api, study_instance_uid: str, series_instance_uid: Optional[str],
                 on_saved: Optional[Callable[[Markup], None]] = None,
                 on_error: Optional[Callable[[Exception], None]] = None):
        self.api = api
        self.study_instance_uid = study_instance_uid
        self.series_instance_uid = series_instance_uid
        self.on_saved = on_saved
        self.on_error = on_error
        self.saved: Set[str] = set()
        self._in_flight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._viewport: Optional[Viewport] = None

    @property
    def saved_count(self) -> int:
        return len(self.saved)

    def attach(self, viewport: Viewport):
        if self._viewport is not None:
            self.detach()
        viewport.subscribe(self.on_markup_completed)
        self._viewport = viewport

    def detach(self):
        if self._viewport is not None:
            self._viewport.unsubscribe(self.on_markup_completed)
            self._viewport = None

    def reset(self):
        self.saved.clear()

    def _should_capture(self, event: MarkupEvent) -> bool:
        if not event.markup_uid:
            return False
        if event.tool_kind not in MEASUREMENT_TOOLS and event.tool_kind not in ANNOTATION_TOOLS:
            return False
        return event.markup_uid not in self.saved and event.markup_uid not in self._in_flight

    def on_markup_completed(self, raw: Dict[str, Any]):
        """Viewport callback. Filters synchronously, then persists in a background task."""
        try:
            event = MarkupEvent.model_validate(raw)
        except ValidationError:
            logger.debug("Ignoring malformed markup event")
            return
        if not self._should_capture(event):
            return
        self._in_flight.add(event.markup_uid)
        task = asyncio.get_running_loop().create_task(self._persist(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self):
        """Wait for every scheduled capture to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def build_record(self, event: MarkupEvent) -> Optional[Markup]:
        """Assemble the canonical record; None when the markup cannot be persisted."""
        if not self.study_instance_uid:
            return None
        try:
            ref = parse_locator(event.image_locator)
        except LocatorError as e:
            logger.warning(f"Dropping markup {event.markup_uid}: {e}")
            return None
        series_uid = ref.series_instance_uid or self.series_instance_uid
        if not series_uid:
            return None
        points = normalize_handles(event.data.get("handles"))
        if not points:
            logger.debug(f"Dropping markup {event.markup_uid}: no extractable points")
            return None
        keys = dict(
            study_instance_uid=self.study_instance_uid,
            series_instance_uid=series_uid,
            sop_instance_uid=ref.sop_instance_uid,
            frame_index=ref.frame_index,
            tool_name=event.tool_kind,
            points=points,
            visible=True,
        )
        color = (event.styles or {}).get("color")
        color = color if isinstance(color, str) else None
        if event.tool_kind in MEASUREMENT_TOOLS:
            cached = event.data.get("cachedStats")
            value, unit = extract_value(cached)
            label = event.data.get("label")
            return Measurement(
                **keys,
                measurement_type=MEASUREMENT_TOOLS[event.tool_kind],
                label=label if isinstance(label, str) and label else None,
                value=value,
                unit=unit,
                roi_stats=extract_roi_stats(cached),
                color=color,
            )
        return Annotation(
            **keys,
            annotation_type=ANNOTATION_TOOLS[event.tool_kind],
            text=extract_text(event.data),
            style=extract_style(event.styles),
            color=color,
            locked=False,
        )

    async def capture(self, event: Union[MarkupEvent, Dict[str, Any]]) -> Optional[Markup]:
        """Persist one completed markup now; None when it was skipped, dropped or failed."""
        if not isinstance(event, MarkupEvent):
            event = MarkupEvent.model_validate(event)
        if not self._should_capture(event):
            return None
        self._in_flight.add(event.markup_uid)
        return await self._persist(event)

    async def _persist(self, event: MarkupEvent) -> Optional[Markup]:
        try:
            try:
                record = self.build_record(event)
            except ValueError as e:
                logger.warning(f"Dropping markup {event.markup_uid}: {e}")
                return None
            if record is None:
                return None
            resource = self.api.measurements if isinstance(record, Measurement) else self.api.annotations
            try:
                saved = await resource.create(record)
            except Exception as e:
                logger.exception(f"Failed to save {event.tool_kind} markup {event.markup_uid}")
                if self.on_error is not None:
                    self.on_error(e)
                return None
        finally:
            self._in_flight.discard(event.markup_uid)
        self.saved.add(event.markup_uid)
        logger.info(f"Saved {event.tool_kind} markup {event.markup_uid} as {saved.id}")
        if self.on_saved is not None:
            self.on_saved(saved)
        return saved
