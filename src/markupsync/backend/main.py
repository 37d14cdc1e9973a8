"""Reference REST backend for measurements, annotations and key images.

An in-memory implementation of the contract the persistence client talks to.
Geometry, statistics and style arrive as opaque JSON strings and are stored
untouched. Run locally with ``uvicorn markupsync.backend.main:app``.
"""

import logging
from typing import Optional, Type, Union

from fastapi import APIRouter, FastAPI, HTTPException, Query, Response
from fastapi.responses import JSONResponse

from .config import DEBUG_ENABLED
from .models import AnnotationRecord, KeyImage, MeasurementRecord
from .storage.store import MarkupStore, RecordTable

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _dbg(msg: str):  # lightweight wrapper to centralize debug guard
    if DEBUG_ENABLED:
        logger.info(f"[DBG] {msg}")


app = FastAPI(title="markupsync reference backend")

# In-memory working state (process lifetime). Tests may call STORE.clear().
STORE = MarkupStore()


def _wire(rec) -> dict:
    return rec.model_dump(mode="json", by_alias=True)


def _bad_request(error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": error, "message": message})


def _markup_router(plural: str, table: RecordTable, model: Type[Union[MeasurementRecord, AnnotationRecord]]) -> APIRouter:
    """Routes shared by /measurements and /annotations (same contract, different record)."""
    router = APIRouter(prefix=f"/{plural}", tags=[plural])

    @router.post("", status_code=201)
    def create(rec: model):
        stored = table.add(rec)
        _dbg(f"{plural}: created {stored.id} tool={stored.tool_name} sop={stored.sop_instance_uid}")
        return _wire(stored)

    @router.get("/study/{study_uid}")
    def by_study(study_uid: str, visible_only: bool = Query(False, alias="visibleOnly")):
        rows = table.where(lambda r: r.study_instance_uid == study_uid and (r.visible or not visible_only))
        return {"studyInstanceUid": study_uid, "count": len(rows), plural: [_wire(r) for r in rows]}

    @router.get("/study/{study_uid}/count")
    def count_by_study(study_uid: str):
        rows = table.where(lambda r: r.study_instance_uid == study_uid)
        return {"studyInstanceUid": study_uid, "count": len(rows)}

    @router.delete("/study/{study_uid}", status_code=204)
    def delete_by_study(study_uid: str):
        n = table.delete_where(lambda r: r.study_instance_uid == study_uid)
        _dbg(f"{plural}: deleted {n} for study {study_uid}")
        return Response(status_code=204)

    @router.get("/series/{series_uid}")
    def by_series(series_uid: str):
        rows = table.where(lambda r: r.series_instance_uid == series_uid)
        return {"seriesInstanceUid": series_uid, "count": len(rows), plural: [_wire(r) for r in rows]}

    @router.delete("/series/{series_uid}", status_code=204)
    def delete_by_series(series_uid: str):
        n = table.delete_where(lambda r: r.series_instance_uid == series_uid)
        _dbg(f"{plural}: deleted {n} for series {series_uid}")
        return Response(status_code=204)

    @router.delete("/instance/{sop_uid}", status_code=204)
    def delete_by_instance(sop_uid: str):
        n = table.delete_where(lambda r: r.sop_instance_uid == sop_uid)
        _dbg(f"{plural}: deleted {n} for instance {sop_uid}")
        return Response(status_code=204)

    @router.get("/instance/{sop_uid}")
    def by_instance(sop_uid: str, frame_index: Optional[int] = Query(None, alias="frameIndex")):
        rows = table.where(
            lambda r: r.sop_instance_uid == sop_uid and (frame_index is None or r.frame_index == frame_index)
        )
        return {
            "sopInstanceUid": sop_uid,
            "frameIndex": frame_index if frame_index is not None else "all",
            "count": len(rows),
            plural: [_wire(r) for r in rows],
        }

    @router.get("/{rec_id}")
    def get_one(rec_id: str):
        rec = table.get(rec_id)
        if rec is None:
            raise HTTPException(status_code=404, detail=f"Not found: {rec_id}")
        return _wire(rec)

    @router.put("/{rec_id}")
    def update(rec_id: str, rec: model):
        try:
            return _wire(table.update(rec_id, rec))
        except KeyError as e:
            return _bad_request("NOT_FOUND", str(e))

    @router.delete("/{rec_id}", status_code=204)
    def delete(rec_id: str):
        table.delete(rec_id)
        return Response(status_code=204)

    @router.post("/{rec_id}/toggle-visibility")
    def toggle_visibility(rec_id: str):
        try:
            return _wire(table.flip(rec_id, "visible"))
        except KeyError as e:
            return _bad_request("NOT_FOUND", str(e))

    return router


annotations_router = _markup_router("annotations", STORE.annotations, AnnotationRecord)


@annotations_router.post("/{rec_id}/toggle-lock")
def toggle_lock(rec_id: str):
    try:
        return _wire(STORE.annotations.flip(rec_id, "locked"))
    except KeyError as e:
        return _bad_request("NOT_FOUND", str(e))


app.include_router(_markup_router("measurements", STORE.measurements, MeasurementRecord))
app.include_router(annotations_router)


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/key-images", status_code=201)
def create_key_image(rec: KeyImage):
    if STORE.find_key_image(rec.study_instance_uid, rec.series_instance_uid,
                            rec.sop_instance_uid, rec.frame_index) is not None:
        return _bad_request("ALREADY_EXISTS", "Key image already exists for this instance and frame")
    return _wire(STORE.key_images.add(rec))


@app.post("/key-images/toggle")
def toggle_key_image(rec: KeyImage):
    created = STORE.toggle_key_image(rec)
    if created is None:
        _dbg(f"key image removed sop={rec.sop_instance_uid} frame={rec.frame_index}")
        return {"action": "removed", "isKeyImage": False}
    _dbg(f"key image added sop={rec.sop_instance_uid} frame={rec.frame_index}")
    return {"action": "added", "isKeyImage": True, "keyImage": _wire(created)}


@app.get("/key-images/check")
def check_key_image(sop_uid: str = Query(..., alias="sopInstanceUid"), frame_index: int = Query(0, alias="frameIndex")):
    hits = STORE.key_images.where(lambda k: k.sop_instance_uid == sop_uid and k.frame_index == frame_index)
    return {"sopInstanceUid": sop_uid, "frameIndex": frame_index, "isKeyImage": bool(hits)}


@app.get("/key-images/study/{study_uid}")
def key_images_by_study(study_uid: str, category: Optional[str] = Query(None)):
    rows = STORE.key_images.where(
        lambda k: k.study_instance_uid == study_uid and (category is None or k.category == category)
    )
    return {"studyInstanceUid": study_uid, "count": len(rows), "keyImages": [_wire(r) for r in rows]}


@app.get("/key-images/study/{study_uid}/count")
def count_key_images_by_study(study_uid: str):
    rows = STORE.key_images.where(lambda k: k.study_instance_uid == study_uid)
    return {"studyInstanceUid": study_uid, "count": len(rows)}


@app.get("/key-images/instance/{sop_uid}")
def key_images_by_instance(sop_uid: str):
    rows = STORE.key_images.where(lambda k: k.sop_instance_uid == sop_uid)
    return {"sopInstanceUid": sop_uid, "count": len(rows), "keyImages": [_wire(r) for r in rows]}


@app.delete("/key-images/instance/{sop_uid}", status_code=204)
def delete_key_image_by_instance(sop_uid: str, frame_index: int = Query(0, alias="frameIndex")):
    STORE.key_images.delete_where(lambda k: k.sop_instance_uid == sop_uid and k.frame_index == frame_index)
    return Response(status_code=204)


@app.get("/key-images/series/{series_uid}")
def key_images_by_series(series_uid: str):
    rows = STORE.key_images.where(lambda k: k.series_instance_uid == series_uid)
    return {"seriesInstanceUid": series_uid, "count": len(rows), "keyImages": [_wire(r) for r in rows]}


@app.delete("/key-images/study/{study_uid}", status_code=204)
def delete_key_images_by_study(study_uid: str):
    STORE.key_images.delete_where(lambda k: k.study_instance_uid == study_uid)
    return Response(status_code=204)


@app.get("/key-images/{rec_id}")
def get_key_image(rec_id: str):
    rec = STORE.key_images.get(rec_id)
    if rec is None:
        raise HTTPException(status_code=404, detail=f"Not found: {rec_id}")
    return _wire(rec)


@app.put("/key-images/{rec_id}")
def update_key_image(rec_id: str, rec: KeyImage):
    try:
        return _wire(STORE.key_images.update(rec_id, rec))
    except KeyError as e:
        return _bad_request("NOT_FOUND", str(e))


@app.delete("/key-images/{rec_id}", status_code=204)
def delete_key_image(rec_id: str):
    STORE.key_images.delete(rec_id)
    return Response(status_code=204)
