import logging
from typing import Callable, Optional, Set

import polars as pl

from .capture import CaptureListener, Markup
from .key_images import KeyImageToggle
from .models import KeyImageToggleResult
from .restore import Restorer, RestoreReport
from .storage.export import measurement_table
from .tools.viewport_state import Viewport

logger = logging.getLogger(__name__)


class ViewerSession:
    """Owns the capture/restore lifecycle for one viewport.

    Opening a study drops the previous study's listener (and with it the set
    of already-saved markup UIDs), attaches a fresh one and restores the
    study's saved markup once. In-flight saves from the old listener are not
    cancelled.
    """

    def __init__(self, viewport: Viewport, api,
                 on_saved: Optional[Callable[[Markup], None]] = None,
                 on_error: Optional[Callable[[Exception], None]] = None,
                 restorer: Optional[Restorer] = None):
        self.viewport = viewport
        self.api = api
        self.on_saved = on_saved
        self.on_error = on_error
        self.restorer = restorer or Restorer(api, viewport)
        self.key_images = KeyImageToggle(api)
        self.listener: Optional[CaptureListener] = None
        self.study_instance_uid: Optional[str] = None
        self._restored: Set[str] = set()

    async def open_study(self, study_uid: str, series_uid: Optional[str] = None) -> Optional[RestoreReport]:
        """Switch to ``study_uid``. Returns the restore report, or None if it was already restored."""
        if study_uid == self.study_instance_uid and self.listener is not None:
            self.set_series(series_uid)
        else:
            self._drop_listener()
            self.study_instance_uid = study_uid
            self.listener = CaptureListener(self.api, study_uid, series_uid,
                                            on_saved=self.on_saved, on_error=self.on_error)
            self.listener.attach(self.viewport)
            logger.info(f"Capturing markup for study {study_uid}")
        if study_uid in self._restored:
            return None
        self._restored.add(study_uid)
        return await self.restorer.restore(study_uid)

    def set_series(self, series_uid: Optional[str]):
        if self.listener is not None:
            self.listener.series_instance_uid = series_uid

    def _drop_listener(self):
        if self.listener is not None:
            self.listener.detach()
            self.listener = None

    async def close(self):
        """Stop capturing and wait for saves already scheduled by this session."""
        listener = self.listener
        self._drop_listener()
        self.study_instance_uid = None
        if listener is not None:
            await listener.drain()

    async def toggle_key_image(self, series_uid: str, sop_uid: str, frame_index: int = 0,
                               **display_state) -> KeyImageToggleResult:
        if self.study_instance_uid is None:
            raise ValueError("No study is open")
        return await self.key_images.toggle(self.study_instance_uid, series_uid, sop_uid, frame_index,
                                            **display_state)

    async def measurement_table(self) -> pl.DataFrame:
        if self.study_instance_uid is None:
            raise ValueError("No study is open")
        return measurement_table(await self.api.measurements.list_by_study(self.study_instance_uid))
