import pytest

from markupsync.backend.models import ViewportMarkup
from markupsync.backend.tools.viewport_state import MarkupLockedError, ViewportState

LOC = "wadors:/api/wado/studies/ST1/series/SE1/instances/SOP1/frames/1"


def _markup(uid="restored-1", locked=False, handles=None):
    return ViewportMarkup(
        markup_uid=uid, tool_kind="ArrowAnnotate", image_locator=LOC,
        handles={"points": [[1, 1, 0], [9, 9, 0]]} if handles is None else handles,
        locked=locked,
    )


def test_locked_markup_rejects_geometry_but_not_visibility():
    vp = ViewportState()
    vp.insert_markup(_markup(locked=True))
    with pytest.raises(MarkupLockedError):
        vp.update_handles("restored-1", {"points": [[0, 0, 0], [1, 1, 0]]})
    assert vp.set_visible("restored-1", False).visible is False
    assert vp.markups["restored-1"].handles == {"points": [[1, 1, 0], [9, 9, 0]]}


def test_unlocked_markup_accepts_edits():
    vp = ViewportState()
    vp.insert_markup(_markup())
    moved = vp.update_handles("restored-1", {"points": [[2, 2, 0], [3, 3, 0]]})
    assert moved.handles["points"][0] == [2, 2, 0]


def test_insert_requires_ready_viewport_and_handles():
    with pytest.raises(RuntimeError):
        ViewportState(ready=False).insert_markup(_markup())
    with pytest.raises(ValueError):
        ViewportState().insert_markup(_markup(handles={}))


def test_emit_reaches_each_subscriber_once():
    vp = ViewportState()
    seen = []
    vp.subscribe(seen.append)
    vp.subscribe(seen.append)
    event = vp.complete("Length", {"points": [[0, 0], [1, 1]]}, LOC, markup_uid="m-1", label="x")
    assert seen == [event]
    assert event["data"]["label"] == "x"
    vp.unsubscribe(seen.append)
    vp.complete("Length", {"points": []}, LOC)
    assert len(seen) == 1
    assert vp.markups_for(LOC) == []
