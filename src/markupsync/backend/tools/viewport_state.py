"""Viewport collaborator contract and an in-memory implementation of it.

The real viewport (rendering, input handling, tool engine) lives outside this
package. ``Viewport`` names the four calls the pipeline relies on;
``ViewportState`` implements them in memory for local runs and tests,
including the lock rule: a locked markup accepts visibility changes but
rejects geometry edits.
"""

import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..models import ViewportMarkup

logger = logging.getLogger(__name__)

MarkupCallback = Callable[[Dict[str, Any]], None]


class Viewport(Protocol):
    def subscribe(self, callback: MarkupCallback) -> None: ...
    def unsubscribe(self, callback: MarkupCallback) -> None: ...
    def insert_markup(self, markup: ViewportMarkup) -> None: ...
    def is_ready(self) -> bool: ...


class MarkupLockedError(RuntimeError):
    pass


class ViewportState:
    def __init__(self, ready: bool = True):
        self._ready = ready
        self._listeners: List[MarkupCallback] = []
        self.markups: Dict[str, ViewportMarkup] = {}

    # readiness
    def is_ready(self) -> bool:
        return self._ready

    def mark_ready(self, ready: bool = True):
        self._ready = ready

    # "markup completed" channel
    def subscribe(self, callback: MarkupCallback):
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unsubscribe(self, callback: MarkupCallback):
        if callback in self._listeners:
            self._listeners.remove(callback)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit_completed(self, event: Dict[str, Any]):
        """Deliver one completion event to every listener, in subscription order."""
        for cb in list(self._listeners):
            cb(event)

    def complete(self, tool_kind: str, handles: Dict[str, Any], image_locator: str,
                 cached_stats: Optional[Dict[str, Any]] = None, markup_uid: Optional[str] = None,
                 styles: Optional[Dict[str, Any]] = None, **data: Any) -> Dict[str, Any]:
        """Simulate a drawing tool finishing a markup; returns the emitted event."""
        event_data = {"handles": handles, **data}
        if cached_stats is not None:
            event_data["cachedStats"] = cached_stats
        event = {
            "markupUID": markup_uid or str(uuid.uuid4()),
            "toolKind": tool_kind,
            "data": event_data,
            "imageLocator": image_locator,
        }
        if styles is not None:
            event["styles"] = styles
        self.emit_completed(event)
        return event

    # markup state
    def insert_markup(self, markup: ViewportMarkup):
        if not self._ready:
            raise RuntimeError("Viewport is not initialized")
        if not markup.handles:
            raise ValueError(f"Markup {markup.markup_uid} has no handles")
        self.markups[markup.markup_uid] = markup

    def set_visible(self, markup_uid: str, visible: bool) -> ViewportMarkup:
        m = self.markups[markup_uid]
        m = m.model_copy(update={"visible": visible})
        self.markups[markup_uid] = m
        return m

    def update_handles(self, markup_uid: str, handles: Dict[str, Any]) -> ViewportMarkup:
        m = self.markups[markup_uid]
        if m.locked:
            raise MarkupLockedError(f"Markup {markup_uid} is locked")
        m = m.model_copy(update={"handles": handles})
        self.markups[markup_uid] = m
        return m

    def markups_for(self, image_locator: str) -> List[ViewportMarkup]:
        return [m for m in self.markups.values() if m.image_locator == image_locator]
