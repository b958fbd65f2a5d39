import itertools

import pytest

from src.instrumentator.domain.event_models import Event, EventFields
from src.instrumentator.services.event_schema import SchemaError, parse_events, reconcile_ids, strip_ids

from .utils import make_event, wire_event


def _counter(prefix="n"):
    seq = itertools.count(1)
    return lambda: f"{prefix}{next(seq)}"


def test_parse_events_assigns_fresh_unique_ids():
    payload = {"events": [wire_event(id="model-1"), wire_event(id="model-1"), wire_event()]}
    events = parse_events(payload, id_factory=_counter())
    assert [e.id for e in events] == ["n1", "n2", "n3"]
    assert events[0].event_name == "view:pricing:click:subscribe"
    assert events[0].event_properties == '{"plan-type": ["free", "pro"]}'


def test_parse_events_preserves_unique_supplied_ids():
    payload = {"events": [wire_event(id="a"), wire_event(id="a"), wire_event(id=""), wire_event(id=7)]}
    events = parse_events(payload, preserve_ids=True, id_factory=_counter())
    assert [e.id for e in events] == ["a", "n1", "n2", "n3"]


def test_parse_events_skips_generated_id_collisions():
    ids = iter(["a", "a", "b"])
    events = parse_events({"events": [wire_event(id="a"), wire_event()]}, preserve_ids=True, id_factory=lambda: next(ids))
    assert [e.id for e in events] == ["a", "b"]


def test_parse_events_accepts_empty_list():
    assert parse_events({"events": []}) == []


def test_parse_events_ignores_unknown_fields():
    events = parse_events({"events": [wire_event(extra="x")]})
    assert not hasattr(events[0], "extra")


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        "events",
        {},
        {"events": None},
        {"events": "nope"},
        {"events": {"action": "x"}},
    ],
)
def test_parse_events_rejects_missing_events_array(payload):
    with pytest.raises(SchemaError):
        parse_events(payload)


def test_parse_events_rejects_whole_payload_on_one_bad_item():
    bad = wire_event()
    del bad["eventProperties"]
    with pytest.raises(SchemaError) as exc:
        parse_events({"events": [wire_event(), bad]})
    assert "Event #1" in str(exc.value)
    assert "eventProperties" in str(exc.value)


def test_parse_events_rejects_non_string_fields():
    with pytest.raises(SchemaError):
        parse_events({"events": [wire_event(eventProperties={"plan": "pro"})]})
    with pytest.raises(SchemaError):
        parse_events({"events": [wire_event(click=None)]})


def test_parse_events_rejects_non_object_item():
    with pytest.raises(SchemaError, match="not an object"):
        parse_events({"events": ["view:pricing"]})


def test_strip_ids_returns_wire_shape():
    wire = strip_ids([make_event("x1")])
    assert wire == [
        {
            "action": "Click on subscribe button on pricing page",
            "view": "view:pricing",
            "click": "click:subscribe",
            "eventName": "view:pricing:click:subscribe",
            "eventProperties": '{"plan-type": ["free", "pro"]}',
        }
    ]


def test_without_id_drops_identity():
    fields = make_event("x1").without_id()
    assert type(fields) is EventFields
    assert fields.event_name == "view:pricing:click:subscribe"


def test_reconcile_ids_keeps_unchanged_rows():
    previous = [make_event("a", name="view:a"), make_event("b", name="view:b")]
    incoming = [
        make_event("n1", name="view:b"),
        make_event("n2", name="view:c"),
        make_event("n3", name="view:a"),
    ]
    result = reconcile_ids(previous, incoming, id_factory=_counter("r"))
    assert [(e.id, e.event_name) for e in result] == [("b", "view:b"), ("n2", "view:c"), ("a", "view:a")]


def test_reconcile_ids_replaces_reused_id_with_new_content():
    previous = [make_event("a", name="view:a")]
    incoming = [make_event("a", name="view:changed")]
    result = reconcile_ids(previous, incoming, id_factory=_counter("r"))
    assert result[0].id == "r1"
    assert result[0].event_name == "view:changed"


def test_reconcile_ids_handles_duplicate_content():
    previous = [make_event("a", name="view:a")]
    incoming = [make_event("x", name="view:a"), make_event("y", name="view:a")]
    result = reconcile_ids(previous, incoming, id_factory=_counter("r"))
    assert [e.id for e in result] == ["a", "y"]


def test_reconcile_ids_result_is_unique():
    previous = [make_event("a", name="view:a"), make_event("b", name="view:b")]
    incoming = [make_event("b", name="view:x"), make_event("z", name="view:b"), make_event("z", name="view:y")]
    result = reconcile_ids(previous, incoming, id_factory=_counter("r"))
    ids = [e.id for e in result]
    assert len(set(ids)) == len(ids)
    assert ids[1] == "b"
    assert isinstance(result[0], Event)
