"""Re-insert saved measurements and annotations when a study is reopened.

Restoration waits for the viewport by polling its readiness flag (bounded by
``ready_timeout``) instead of sleeping a fixed delay, then rebuilds each
visible record into tool-native markup. Every record is handled on its own:
a malformed record is logged and skipped, the rest still restore.

Running ``restore`` twice inserts everything twice; ``ViewerSession`` makes
sure it runs once per study.
"""

import asyncio
import logging
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from .config import READY_POLL_INTERVAL, READY_TIMEOUT
from .models import Annotation, Measurement, ViewportMarkup
from .tools.geometry import check_cardinality, handles_from_points
from .tools.locator import build_locator
from .tools.stats import cached_stats_from_record
from .tools.viewport_state import Viewport

logger = logging.getLogger(__name__)

RESTORED_PREFIX = "restored-"


class RestoreReport(BaseModel):
    study_instance_uid: str
    viewport_ready: bool = True
    inserted: int = 0
    hidden: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)


def restored_uid(record_id: Optional[str]) -> str:
    return f"{RESTORED_PREFIX}{record_id}"


def measurement_to_markup(m: Measurement) -> ViewportMarkup:
    """Rebuild the viewport markup of a saved measurement. Raises ValueError if unrestorable."""
    points = check_cardinality(m.tool_name, m.points)
    locator = build_locator(m.study_instance_uid, m.series_instance_uid, m.sop_instance_uid, m.frame_index)
    return ViewportMarkup(
        markup_uid=restored_uid(m.id),
        tool_kind=m.tool_name,
        image_locator=locator,
        handles=handles_from_points(points),
        text=m.label,
        color=m.color,
        cached_stats=cached_stats_from_record(m, locator),
        visible=m.visible,
        locked=False,
    )


def annotation_to_markup(a: Annotation) -> ViewportMarkup:
    """Rebuild the viewport markup of a saved annotation. Raises ValueError if unrestorable."""
    points = check_cardinality(a.tool_name, a.points)
    locator = build_locator(a.study_instance_uid, a.series_instance_uid, a.sop_instance_uid, a.frame_index)
    return ViewportMarkup(
        markup_uid=restored_uid(a.id),
        tool_kind=a.tool_name,
        image_locator=locator,
        handles=handles_from_points(points),
        text=a.text or "",
        style=a.style.model_dump(by_alias=True, exclude_none=True) if a.style else None,
        color=a.color,
        visible=a.visible,
        locked=a.locked,
    )


class Restorer:
    def __init__(self, api, viewport: Viewport,
                 poll_interval: float = READY_POLL_INTERVAL, ready_timeout: float = READY_TIMEOUT):
        self.api = api
        self.viewport = viewport
        self.poll_interval = poll_interval
        self.ready_timeout = ready_timeout

    async def wait_until_ready(self) -> bool:
        """Poll the viewport until it reports ready; False once ``ready_timeout`` runs out."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.ready_timeout
        while not self.viewport.is_ready():
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)
        return True

    async def _fetch(self, kind: str, study_uid: str) -> list:
        resource = self.api.measurements if kind == "measurements" else self.api.annotations
        try:
            return await resource.list_by_study(study_uid)
        except Exception:
            logger.exception(f"Failed to load {kind} for study {study_uid}")
            return []

    async def restore(self, study_uid: str) -> RestoreReport:
        report = RestoreReport(study_instance_uid=study_uid)
        measurements, annotations = await asyncio.gather(
            self._fetch("measurements", study_uid),
            self._fetch("annotations", study_uid),
        )
        records: List[Union[Measurement, Annotation]] = [*measurements, *annotations]
        if not records:
            return report

        if not await self.wait_until_ready():
            logger.warning(f"Viewport not ready after {self.ready_timeout}s; "
                           f"skipping restore of {len(records)} record(s) for study {study_uid}")
            report.viewport_ready = False
            return report

        for rec in records:
            if not rec.visible:
                report.hidden += 1
                continue
            try:
                if isinstance(rec, Measurement):
                    markup = measurement_to_markup(rec)
                else:
                    markup = annotation_to_markup(rec)
                self.viewport.insert_markup(markup)
            except Exception as e:
                report.failed += 1
                report.errors.append(f"{rec.id}: {e}")
                logger.warning(f"Failed to restore {rec.tool_name} record {rec.id}: {e}")
                continue
            report.inserted += 1

        logger.info(f"Restored {report.inserted} markup(s) for study {study_uid} "
                    f"({report.hidden} hidden, {report.failed} failed)")
        return report
