import logging
from typing import Optional

from .models import KeyImage, KeyImageToggleResult

logger = logging.getLogger(__name__)


class KeyImageToggle:
    """Mark or unmark one frame as a key image.

    A pure presence flip on (study, series, instance, frame): marking an
    already-marked frame removes it. The display state passed in is stored
    only when the frame becomes a key image.
    """

    def __init__(self, api):
        self.api = api

    async def toggle(self, study_uid: str, series_uid: str, sop_uid: str, frame_index: int = 0, *,
                     instance_number: Optional[int] = None, description: Optional[str] = None,
                     category: Optional[str] = None, window_width: Optional[float] = None,
                     window_center: Optional[float] = None) -> KeyImageToggleResult:
        rec = KeyImage(
            study_instance_uid=study_uid,
            series_instance_uid=series_uid,
            sop_instance_uid=sop_uid,
            frame_index=frame_index,
            instance_number=instance_number,
            description=description,
            category=category,
            window_width=window_width,
            window_center=window_center,
        )
        result = await self.api.key_images.toggle(rec)
        logger.info(f"Key image {result.action}: sop={sop_uid} frame={frame_index}")
        return result

    async def is_key_image(self, sop_uid: str, frame_index: int = 0) -> bool:
        return await self.api.key_images.check(sop_uid, frame_index)
