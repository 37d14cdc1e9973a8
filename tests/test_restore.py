import asyncio
import logging

from markupsync.backend.adapters.api import ApiError
from markupsync.backend.capture import CaptureListener
from markupsync.backend.models import Annotation, AnnotationStyle, Measurement, Point3D, ROIStats
from markupsync.backend.restore import Restorer, annotation_to_markup, measurement_to_markup
from markupsync.backend.tools.viewport_state import ViewportState


def _length(id_, visible=True, frame_index=0, **kw):
    return Measurement(
        id=id_, study_instance_uid="ST1", series_instance_uid="SE1", sop_instance_uid="SOP1",
        frame_index=frame_index, measurement_type="LENGTH", tool_name="Length",
        value=40.0, unit="mm", visible=visible,
        points=[Point3D(x=10, y=20), Point3D(x=50, y=20)], **kw,
    )


def _arrow(id_, points=None, **kw):
    if points is None:
        points = [Point3D(x=1, y=1), Point3D(x=9, y=9)]
    return Annotation(
        id=id_, study_instance_uid="ST1", series_instance_uid="SE1", sop_instance_uid="SOP1",
        annotation_type="ARROW", tool_name="ArrowAnnotate", points=points, **kw,
    )


def _restorer(api, viewport, timeout=1.0):
    return Restorer(api, viewport, poll_interval=0.01, ready_timeout=timeout)


def test_measurement_markup_uses_restored_uid_and_locator():
    m = measurement_to_markup(_length("abc", frame_index=2, label="L1"))
    assert m.markup_uid == "restored-abc"
    assert m.image_locator.endswith("/studies/ST1/series/SE1/instances/SOP1/frames/3")
    assert m.handles == {"points": [[10.0, 20.0, 0.0], [50.0, 20.0, 0.0]]}
    assert m.text == "L1"
    assert m.locked is False


def test_ellipse_markup_gets_cached_stats():
    m = Measurement(
        id="e1", study_instance_uid="ST1", series_instance_uid="SE1", sop_instance_uid="SOP1",
        measurement_type="ELLIPSE_ROI", tool_name="EllipticalROI", value=706.5, unit="mm²",
        points=[Point3D(x=0, y=0), Point3D(x=30, y=30)],
        roi_stats=ROIStats(mean=120.5, std_dev=15.2, min=80, max=200, area=706.5),
    )
    markup = measurement_to_markup(m)
    assert markup.cached_stats[markup.image_locator]["mean"] == 120.5


def test_annotation_markup_keeps_lock_and_style():
    a = _arrow("a1", text=None, locked=True, style=AnnotationStyle(line_width=3))
    markup = annotation_to_markup(a)
    assert markup.text == ""
    assert markup.locked is True
    assert markup.style == {"lineWidth": 3.0}


def test_hidden_records_are_never_inserted(fake_api, fake_resource):
    api = fake_api(measurements=fake_resource([_length("m1"), _length("m2", visible=False)]))
    viewport = ViewportState()
    report = asyncio.run(_restorer(api, viewport).restore("ST1"))
    assert report.inserted == 1 and report.hidden == 1
    assert list(viewport.markups) == ["restored-m1"]


def test_malformed_record_does_not_block_others(fake_api, fake_resource, caplog):
    api = fake_api(
        measurements=fake_resource([_length("m1")]),
        annotations=fake_resource([_arrow("a1", points=[]), _arrow("a2")]),
    )
    viewport = ViewportState()
    with caplog.at_level(logging.WARNING):
        report = asyncio.run(_restorer(api, viewport).restore("ST1"))
    assert report.inserted == 2
    assert report.failed == 1
    assert report.errors[0].startswith("a1:")
    assert set(viewport.markups) == {"restored-m1", "restored-a2"}
    assert "a1" in caplog.text


def test_waits_for_viewport_readiness(fake_api, fake_resource):
    api = fake_api(measurements=fake_resource([_length("m1")]))
    viewport = ViewportState(ready=False)

    async def run():
        asyncio.get_running_loop().call_later(0.05, viewport.mark_ready)
        return await _restorer(api, viewport).restore("ST1")

    report = asyncio.run(run())
    assert report.viewport_ready is True
    assert report.inserted == 1


def test_never_ready_viewport_skips_restore(fake_api, fake_resource):
    api = fake_api(measurements=fake_resource([_length("m1")]))
    viewport = ViewportState(ready=False)
    report = asyncio.run(_restorer(api, viewport, timeout=0.05).restore("ST1"))
    assert report.viewport_ready is False
    assert report.inserted == 0
    assert viewport.markups == {}


def test_failed_fetch_still_restores_other_kind(fake_api, fake_resource):
    api = fake_api(
        measurements=fake_resource(list_error=ApiError(500, "HTTP_ERROR", "boom")),
        annotations=fake_resource([_arrow("a1")]),
    )
    viewport = ViewportState()
    report = asyncio.run(_restorer(api, viewport).restore("ST1"))
    assert report.inserted == 1
    assert list(viewport.markups) == ["restored-a1"]


def test_nothing_saved_is_a_no_op(fake_api):
    viewport = ViewportState(ready=False)
    report = asyncio.run(_restorer(fake_api(), viewport, timeout=5).restore("ST1"))
    assert report.inserted == 0 and report.viewport_ready is True


def test_capture_then_restore_round_trip(make_api):
    loc = "wadors:/api/wado/studies/ST1/series/SE1/instances/SOP1/frames/1"

    async def run():
        async with make_api() as api:
            source = ViewportState()
            listener = CaptureListener(api, "ST1", "SE1")
            listener.attach(source)
            source.complete("Length", {"points": [[10, 20, 0], [50, 20, 0]]}, loc,
                            cached_stats={loc: {"length": 40.0}}, markup_uid="m-1")
            source.complete("ArrowAnnotate", {"start": [1, 1, 0], "end": [9, 9, 0]}, loc,
                            markup_uid="a-1", text="look here")
            await listener.drain()

            target = ViewportState()
            report = await _restorer(api, target).restore("ST1")
            return report, target

    report, target = asyncio.run(run())
    assert report.inserted == 2
    markups = sorted(target.markups.values(), key=lambda m: m.tool_kind)
    arrow, length = markups
    assert length.image_locator == loc
    assert length.handles == {"points": [[10.0, 20.0, 0.0], [50.0, 20.0, 0.0]]}
    assert arrow.text == "look here"
    assert arrow.handles == {"points": [[1.0, 1.0, 0.0], [9.0, 9.0, 0.0]]}
