import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from ..models import AnnotationRecord, KeyImage, MeasurementRecord

R = TypeVar("R", MeasurementRecord, AnnotationRecord, KeyImage)

# Never overwritten by an update payload
_IMMUTABLE = {"id", "study_instance_uid", "series_instance_uid", "sop_instance_uid", "frame_index", "created_at"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RecordTable(Generic[R]):
    """In-memory table of one record kind, keyed by generated id."""

    def __init__(self):
        self.rows: Dict[str, R] = {}

    def add(self, rec: R) -> R:
        ts = _now()
        stored = rec.model_copy(update={"id": str(uuid.uuid4()), "created_at": ts, "updated_at": ts})
        self.rows[stored.id] = stored
        return stored

    def get(self, rec_id: str) -> Optional[R]:
        return self.rows.get(rec_id)

    def update(self, rec_id: str, patch: R) -> R:
        """Apply only the fields explicitly set on ``patch``."""
        if rec_id not in self.rows:
            raise KeyError(f"Record not found: {rec_id}")
        changes = {k: v for k, v in patch.model_dump(exclude_unset=True).items() if k not in _IMMUTABLE}
        changes["updated_at"] = _now()
        updated = self.rows[rec_id].model_copy(update=changes)
        self.rows[rec_id] = updated
        return updated

    def flip(self, rec_id: str, field: str) -> R:
        if rec_id not in self.rows:
            raise KeyError(f"Record not found: {rec_id}")
        cur = self.rows[rec_id]
        updated = cur.model_copy(update={field: not getattr(cur, field), "updated_at": _now()})
        self.rows[rec_id] = updated
        return updated

    def delete(self, rec_id: str) -> bool:
        return self.rows.pop(rec_id, None) is not None

    def where(self, pred: Callable[[R], bool]) -> List[R]:
        return sorted((r for r in self.rows.values() if pred(r)), key=lambda r: r.created_at)

    def delete_where(self, pred: Callable[[R], bool]) -> int:
        doomed = [k for k, r in self.rows.items() if pred(r)]
        for k in doomed:
            del self.rows[k]
        return len(doomed)


class MarkupStore:
    """Ephemeral store behind the reference backend: measurements, annotations, key images."""

    def __init__(self):
        self.measurements: RecordTable[MeasurementRecord] = RecordTable()
        self.annotations: RecordTable[AnnotationRecord] = RecordTable()
        self.key_images: RecordTable[KeyImage] = RecordTable()

    def find_key_image(self, study_uid: str, series_uid: str, sop_uid: str, frame_index: int) -> Optional[KeyImage]:
        hits = self.key_images.where(
            lambda k: (k.study_instance_uid, k.series_instance_uid, k.sop_instance_uid, k.frame_index)
            == (study_uid, series_uid, sop_uid, frame_index)
        )
        return hits[0] if hits else None

    def toggle_key_image(self, key_image: KeyImage) -> Optional[KeyImage]:
        """Remove the key image at this (study, series, sop, frame) if present, else add it.

        Returns the created record, or None when one was removed.
        """
        existing = self.find_key_image(
            key_image.study_instance_uid, key_image.series_instance_uid,
            key_image.sop_instance_uid, key_image.frame_index,
        )
        if existing is not None:
            self.key_images.delete(existing.id)
            return None
        return self.key_images.add(key_image)

    def clear(self):
        for table in (self.measurements, self.annotations, self.key_images):
            table.rows.clear()
