import json

import pytest

from flickr_harvester.core.events import STOP, EventSink
from flickr_harvester.core.models import PhotoEvent, ProcessingContext, freeze
from flickr_harvester.io.event_log import JsonlEventLog, StopAfter


def _event(number: int = 1) -> PhotoEvent:
    return PhotoEvent(
        collection_id="721",
        owner_id="me",
        photo=freeze({"id": str(number), "title": "t", "direct_urls": freeze({"small": "u"})}),
        collection_metadata=freeze({}),
        context=ProcessingContext(page=1, photo_number=number, total_photos=3, detail_level="full"),
    )


def test_dispatch_runs_every_subscriber_in_order() -> None:
    order = []
    sink = EventSink()
    sink.subscribe(lambda e: order.append("a"), name="a")
    sink.subscribe(lambda e: (order.append("b"), STOP)[1], name="b")
    sink.subscribe(lambda e: order.append("c") or True, name="c")

    result = sink.dispatch(_event())
    assert order == ["a", "b", "c"]
    assert result.stop_requested
    assert result.stopped_by == "b"


def test_dispatch_without_stop() -> None:
    result = EventSink([lambda e: None]).dispatch(_event())
    assert not result.stop_requested
    assert result.stopped_by is None


def test_subscriber_errors_propagate() -> None:
    def broken(event):
        raise RuntimeError("consumer crashed")

    with pytest.raises(RuntimeError):
        EventSink([broken]).dispatch(_event())


def test_event_is_read_only() -> None:
    event = _event()
    with pytest.raises(TypeError):
        event.photo["title"] = "x"
    with pytest.raises(AttributeError):
        event.owner_id = "other"
    assert event.direct_urls["small"] == "u"


def test_stop_after() -> None:
    stop = StopAfter(2)
    assert stop(_event(1)) is None
    assert stop(_event(2)) == STOP


def test_jsonl_event_log(tmp_path) -> None:
    path = tmp_path / "out" / "events.jsonl"
    log = JsonlEventLog(str(path))
    assert EventSink([log]).dispatch(_event(1)).stop_requested is False
    log(_event(2))
    log.close()

    lines = [json.loads(x) for x in path.read_text(encoding="utf-8").splitlines()]
    assert [r["photo_number"] for r in lines] == [1, 2]
    assert lines[0]["type"] == "photo_event"
    assert lines[0]["photo"]["direct_urls"] == {"small": "u"}
    assert log.written == 2


def test_any_truthy_return_requests_stop() -> None:
    sink = EventSink()
    sink.subscribe(lambda e: 0, name="zero")
    sink.subscribe(lambda e: 1, name="one")

    result = sink.dispatch(_event())
    assert result.stop_requested
    assert result.stopped_by == "one"
