import asyncio
import logging

from markupsync.backend.capture import CaptureListener, extract_style, extract_text
from markupsync.backend.models import Annotation, Measurement, Point3D, ROIStats
from markupsync.backend.tools.viewport_state import ViewportState

LOC = "wadors:/api/wado/studies/ST1/series/SE1/instances/SOP1/frames/1"

LENGTH_EVENT = {
    "markupUID": "m-1",
    "toolKind": "Length",
    "data": {
        "handles": {"points": [[10, 20, 0], [50, 20, 0]]},
        "cachedStats": {LOC: {"length": 40.0}},
    },
    "imageLocator": LOC,
}


def _listener(api, **kw):
    return CaptureListener(api, "ST1", "SE1", **kw)


def test_length_markup_becomes_measurement(fake_api):
    api = fake_api()
    saved = []

    async def run():
        listener = _listener(api, on_saved=saved.append)
        return await listener.capture(LENGTH_EVENT)

    rec = asyncio.run(run())
    assert isinstance(rec, Measurement)
    assert rec.measurement_type == "LENGTH"
    assert rec.points == [Point3D(x=10, y=20), Point3D(x=50, y=20)]
    assert rec.value == 40.0 and rec.unit == "mm"
    assert rec.sop_instance_uid == "SOP1"
    assert rec.frame_index == 0
    assert rec.roi_stats is None
    assert saved == [rec]


def test_ellipse_markup_carries_roi_stats(fake_api):
    api = fake_api()
    event = {
        "markupUID": "m-2",
        "toolKind": "EllipticalROI",
        "data": {
            "handles": {"points": [[0, 0, 0], [30, 30, 0]]},
            "cachedStats": {LOC: {"mean": 120.5, "stdDev": 15.2, "min": 80, "max": 200, "area": 706.5}},
        },
        "imageLocator": LOC,
    }
    rec = asyncio.run(_listener(api).capture(event))
    assert rec.measurement_type == "ELLIPSE_ROI"
    assert rec.value == 706.5 and rec.unit == "mm²"
    assert rec.roi_stats == ROIStats(mean=120.5, std_dev=15.2, min=80, max=200, area=706.5)


def test_same_markup_saved_once(fake_api):
    api = fake_api()

    async def run():
        viewport = ViewportState()
        listener = _listener(api)
        listener.attach(viewport)
        viewport.emit_completed(LENGTH_EVENT)
        viewport.emit_completed(LENGTH_EVENT)
        await listener.drain()
        viewport.emit_completed(LENGTH_EVENT)
        await listener.drain()
        return listener

    listener = asyncio.run(run())
    assert api.measurements.create_calls == 1
    assert len(api.measurements.records) == 1
    assert listener.saved_count == 1


def test_failed_save_can_be_retried(fake_api, fake_resource):
    api = fake_api(measurements=fake_resource(fail_times=1))
    errors = []

    async def run():
        listener = _listener(api, on_error=errors.append)
        first = await listener.capture(LENGTH_EVENT)
        second = await listener.capture(LENGTH_EVENT)
        third = await listener.capture(LENGTH_EVENT)
        return first, second, third

    first, second, third = asyncio.run(run())
    assert first is None
    assert second is not None
    assert third is None
    assert len(errors) == 1
    assert len(api.measurements.records) == 1
    assert api.measurements.create_calls == 2


def test_navigation_tools_ignored(fake_api):
    api = fake_api()
    event = {**LENGTH_EVENT, "markupUID": "pan-1", "toolKind": "Pan"}
    assert asyncio.run(_listener(api).capture(event)) is None
    assert api.measurements.create_calls == 0
    assert api.annotations.create_calls == 0


def test_markup_without_points_dropped(fake_api):
    api = fake_api()
    event = {**LENGTH_EVENT, "data": {"handles": {"points": []}}}
    assert asyncio.run(_listener(api).capture(event)) is None
    event = {**LENGTH_EVENT, "data": {"handles": {"start": {"x": 1}, "textBox": {"text": "x"}}}}
    assert asyncio.run(_listener(api).capture(event)) is None
    assert api.measurements.create_calls == 0


def test_unparseable_locator_dropped(fake_api, caplog):
    api = fake_api()
    event = {**LENGTH_EVENT, "imageLocator": "wadouri:/files/a.dcm"}
    with caplog.at_level(logging.WARNING):
        assert asyncio.run(_listener(api).capture(event)) is None
    assert api.measurements.create_calls == 0
    assert "m-1" in caplog.text


def test_arrow_annotation_text_and_style(fake_api):
    api = fake_api()
    event = {
        "markupUID": "a-1",
        "toolKind": "ArrowAnnotate",
        "data": {
            "handles": {
                "start": [5, 5, 0],
                "end": [25, 30, 0],
                "textBox": {"text": "lesion", "hasMoved": False},
                "activeHandleIndex": None,
            },
        },
        "imageLocator": LOC,
        "styles": {"color": "rgb(255, 0, 0)", "lineWidth": 2, "lineDash": [4, 4], "textBox": {"hasMoved": True}},
    }
    rec = asyncio.run(_listener(api).capture(event))
    assert isinstance(rec, Annotation)
    assert rec.annotation_type == "ARROW"
    assert rec.points == [Point3D(x=5, y=5), Point3D(x=25, y=30)]
    assert rec.text == "lesion"
    assert rec.color == "rgb(255, 0, 0)"
    assert rec.style.line_width == 2
    assert rec.style.line_dash == [4.0, 4.0]
    assert rec.style.text_box.has_moved is True
    assert rec.locked is False
    assert api.annotations.records == [rec]


def test_series_falls_back_to_listener_context(fake_api):
    api = fake_api()
    event = {**LENGTH_EVENT, "imageLocator": "wadors:/api/wado/instances/SOP7/frames/4"}
    rec = asyncio.run(_listener(api).capture(event))
    assert rec.series_instance_uid == "SE1"
    assert rec.sop_instance_uid == "SOP7"
    assert rec.frame_index == 3


def test_detach_stops_capture(fake_api):
    api = fake_api()

    async def run():
        viewport = ViewportState()
        listener = _listener(api)
        listener.attach(viewport)
        listener.detach()
        viewport.emit_completed(LENGTH_EVENT)
        await listener.drain()
        return viewport

    viewport = asyncio.run(run())
    assert viewport.listener_count == 0
    assert api.measurements.create_calls == 0


def test_extract_text_precedence():
    assert extract_text({"text": "a", "label": "c"}) == "a"
    assert extract_text({"handles": {"textBox": {"text": "b"}}, "label": "c"}) == "b"
    assert extract_text({"label": "c"}) == "c"
    assert extract_text({"text": ""}) is None


def test_extract_style_empty_is_none():
    assert extract_style(None) is None
    assert extract_style({"color": "red"}) is None
    assert extract_style({"lineDash": "2,2"}).line_dash == "2,2"


def test_nan_statistics_still_persist_through_backend(make_api):
    nan = float("nan")
    errors = []
    length = {**LENGTH_EVENT, "data": {**LENGTH_EVENT["data"], "cachedStats": {LOC: {"length": nan}}}}
    ellipse = {
        "markupUID": "m-3",
        "toolKind": "EllipticalROI",
        "data": {
            "handles": {"points": [[0, 0, 0], [30, 30, 0]]},
            "cachedStats": {LOC: {"mean": nan, "area": 706.5}},
        },
        "imageLocator": LOC,
    }

    async def run():
        async with make_api() as api:
            listener = _listener(api, on_error=errors.append)
            first = await listener.capture(length)
            second = await listener.capture(ellipse)
            return first, second, await api.measurements.count_by_study("ST1")

    first, second, count = asyncio.run(run())
    assert errors == []
    assert first.value is None and first.unit is None
    assert second.roi_stats is None
    assert second.value == 706.5
    assert count == 2
