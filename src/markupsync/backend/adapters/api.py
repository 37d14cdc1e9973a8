"""Async REST client for the measurement, annotation and key-image endpoints.

Maps canonical records to the backend wire schema and back. Geometry,
statistics and style cross the wire as JSON strings; a blob that fails to
decode degrades to ``None`` (``[]`` for points) with a warning instead of
failing the whole read.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..config import API_BASE, API_TIMEOUT
from ..models import (
    Annotation,
    AnnotationRecord,
    KeyImage,
    KeyImageToggleResult,
    Measurement,
    MeasurementRecord,
)
from ..storage.codec import (
    DecodeFailure,
    decode_points,
    decode_roi_stats,
    decode_style,
    encode_model,
    encode_points,
    value_or,
)
from ..tools.locator import LocatorError, build_locator

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Non-2xx response from the backend."""

    def __init__(self, status_code: int, error: str, message: str):
        super().__init__(f"{status_code} {error}: {message}")
        self.status_code = status_code
        self.error = error
        self.message = message


def _raise_for_status(resp: httpx.Response):
    if resp.is_success:
        return
    error, message = "HTTP_ERROR", resp.text
    try:
        body = resp.json()
        if isinstance(body, dict):
            error = body.get("error", error)
            message = body.get("message") or body.get("detail") or message
    except ValueError:
        pass
    raise ApiError(resp.status_code, str(error), str(message))


def _checked(field: str, rec_id: Optional[str], result, default=None):
    if isinstance(result, DecodeFailure):
        logger.warning(f"Dropping undecodable {field} blob on record {rec_id}: {result.reason}")
    return value_or(result, default)


def _image_id(rec) -> Optional[str]:
    try:
        return build_locator(rec.study_instance_uid, rec.series_instance_uid, rec.sop_instance_uid, rec.frame_index)
    except LocatorError:
        return None


_STRUCTURED = {"points", "roi_stats", "style"}


def measurement_to_wire(m: Measurement) -> Dict[str, Any]:
    rec = MeasurementRecord(
        **m.model_dump(exclude=_STRUCTURED),
        image_id=_image_id(m),
        points_json=encode_points(m.points),
        roi_stats_json=encode_model(m.roi_stats),
    )
    return rec.model_dump(mode="json", by_alias=True, exclude_none=True)


def measurement_from_wire(body: Dict[str, Any]) -> Measurement:
    rec = MeasurementRecord.model_validate(body)
    return Measurement(
        **rec.model_dump(exclude={"image_id", "points_json", "roi_stats_json"}),
        points=_checked("points", rec.id, decode_points(rec.points_json), []),
        roi_stats=_checked("roiStats", rec.id, decode_roi_stats(rec.roi_stats_json)),
    )


def annotation_to_wire(a: Annotation) -> Dict[str, Any]:
    rec = AnnotationRecord(
        **a.model_dump(exclude=_STRUCTURED),
        image_id=_image_id(a),
        points_json=encode_points(a.points),
        style_json=encode_model(a.style),
    )
    return rec.model_dump(mode="json", by_alias=True, exclude_none=True)


def annotation_from_wire(body: Dict[str, Any]) -> Annotation:
    rec = AnnotationRecord.model_validate(body)
    return Annotation(
        **rec.model_dump(exclude={"image_id", "points_json", "style_json"}),
        points=_checked("points", rec.id, decode_points(rec.points_json), []),
        style=_checked("style", rec.id, decode_style(rec.style_json)),
    )


class _Resource:
    path = ""
    list_key = ""

    def __init__(self, http: httpx.AsyncClient):
        self._http = http

    def _to_wire(self, rec) -> Dict[str, Any]:
        return rec.model_dump(mode="json", by_alias=True, exclude_none=True)

    def _from_wire(self, body: Dict[str, Any]):
        raise NotImplementedError

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        resp = await self._http.request(method, url, **kwargs)
        _raise_for_status(resp)
        return resp

    async def _list(self, url: str, params: Optional[Dict[str, Any]] = None) -> list:
        resp = await self._request("GET", url, params=params)
        out = []
        for body in resp.json().get(self.list_key, []):
            try:
                out.append(self._from_wire(body))
            except ValidationError as e:
                logger.warning(f"Skipping malformed {self.list_key} entry {body.get('id') if isinstance(body, dict) else body!r}: {e.error_count()} error(s)")
        return out

    async def create(self, rec):
        resp = await self._request("POST", self.path, json=self._to_wire(rec))
        return self._from_wire(resp.json())

    async def get(self, rec_id: str):
        resp = await self._http.get(f"{self.path}/{rec_id}")
        if resp.status_code == 404:
            return None
        _raise_for_status(resp)
        return self._from_wire(resp.json())

    async def update(self, rec_id: str, rec):
        resp = await self._request("PUT", f"{self.path}/{rec_id}", json=self._to_wire(rec))
        return self._from_wire(resp.json())

    async def delete(self, rec_id: str) -> None:
        await self._request("DELETE", f"{self.path}/{rec_id}")

    async def list_by_series(self, series_uid: str) -> list:
        return await self._list(f"{self.path}/series/{series_uid}")

    async def delete_by_study(self, study_uid: str) -> None:
        await self._request("DELETE", f"{self.path}/study/{study_uid}")

    async def count_by_study(self, study_uid: str) -> int:
        resp = await self._request("GET", f"{self.path}/study/{study_uid}/count")
        return int(resp.json().get("count", 0))


class _MarkupResource(_Resource):
    async def list_by_study(self, study_uid: str, visible_only: bool = False) -> list:
        params = {"visibleOnly": "true"} if visible_only else None
        return await self._list(f"{self.path}/study/{study_uid}", params)

    async def list_by_instance(self, sop_uid: str, frame_index: Optional[int] = None) -> list:
        params = {"frameIndex": frame_index} if frame_index is not None else None
        return await self._list(f"{self.path}/instance/{sop_uid}", params)

    async def delete_by_series(self, series_uid: str) -> None:
        await self._request("DELETE", f"{self.path}/series/{series_uid}")

    async def delete_by_instance(self, sop_uid: str) -> None:
        await self._request("DELETE", f"{self.path}/instance/{sop_uid}")

    async def toggle_visibility(self, rec_id: str):
        resp = await self._request("POST", f"{self.path}/{rec_id}/toggle-visibility")
        return self._from_wire(resp.json())


class MeasurementsApi(_MarkupResource):
    path = "/measurements"
    list_key = "measurements"

    def _to_wire(self, rec: Measurement) -> Dict[str, Any]:
        return measurement_to_wire(rec)

    def _from_wire(self, body: Dict[str, Any]) -> Measurement:
        return measurement_from_wire(body)


class AnnotationsApi(_MarkupResource):
    path = "/annotations"
    list_key = "annotations"

    def _to_wire(self, rec: Annotation) -> Dict[str, Any]:
        return annotation_to_wire(rec)

    def _from_wire(self, body: Dict[str, Any]) -> Annotation:
        return annotation_from_wire(body)

    async def toggle_lock(self, rec_id: str) -> Annotation:
        resp = await self._request("POST", f"{self.path}/{rec_id}/toggle-lock")
        return self._from_wire(resp.json())


class KeyImagesApi(_Resource):
    path = "/key-images"
    list_key = "keyImages"

    def _from_wire(self, body: Dict[str, Any]) -> KeyImage:
        return KeyImage.model_validate(body)

    async def toggle(self, rec: KeyImage) -> KeyImageToggleResult:
        resp = await self._request("POST", f"{self.path}/toggle", json=self._to_wire(rec))
        return KeyImageToggleResult.model_validate(resp.json())

    async def list_by_study(self, study_uid: str, category: Optional[str] = None) -> List[KeyImage]:
        params = {"category": category} if category is not None else None
        return await self._list(f"{self.path}/study/{study_uid}", params)

    async def list_by_instance(self, sop_uid: str) -> List[KeyImage]:
        return await self._list(f"{self.path}/instance/{sop_uid}")

    async def delete_by_instance(self, sop_uid: str, frame_index: int = 0) -> None:
        await self._request("DELETE", f"{self.path}/instance/{sop_uid}", params={"frameIndex": frame_index})

    async def check(self, sop_uid: str, frame_index: int = 0) -> bool:
        resp = await self._request(
            "GET", f"{self.path}/check", params={"sopInstanceUid": sop_uid, "frameIndex": frame_index}
        )
        return bool(resp.json().get("isKeyImage"))


class MarkupApiClient:
    """Entry point: ``async with MarkupApiClient() as api: await api.measurements.create(m)``.

    ``transport`` lets tests route requests to an in-process ASGI app.
    """

    def __init__(self, base_url: str = API_BASE, timeout: float = API_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self.measurements = MeasurementsApi(self._http)
        self.annotations = AnnotationsApi(self._http)
        self.key_images = KeyImagesApi(self._http)

    async def aclose(self):
        await self._http.aclose()

    async def __aenter__(self) -> "MarkupApiClient":
        return self

    async def __aexit__(self, *exc):
        await self.aclose()
