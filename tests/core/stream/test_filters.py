# tests/core/stream/test_filters.py
import pytest

from mqtt_tail.contracts.events import MessageReceived
from mqtt_tail.core.errors import SetupError
from mqtt_tail.core.stream.filters import FilterSet, compile_filter


def msg(topic="a/b", payload=b"", retain=False):
    return MessageReceived(topic=topic, payload=payload, retain=retain)


def test_empty_pattern_compiles_to_none():
    assert compile_filter(None, "--filter") is None
    assert compile_filter("", "--filter") is None


def test_invalid_pattern_raises_setup_error():
    with pytest.raises(SetupError) as exc_info:
        compile_filter("([", "--filter")

    assert str(exc_info.value).startswith('Invalid --filter regex "([": ')


def test_invalid_payload_pattern_names_its_flag():
    with pytest.raises(SetupError, match="--payload-filter"):
        FilterSet.from_patterns(payload_pattern="*oops")


def test_matching_is_unanchored_and_case_sensitive():
    filters = FilterSet.from_patterns(topic_pattern="temp")

    assert filters.accepts(msg("house/kitchen/temperature"))
    assert not filters.accepts(msg("house/kitchen/TEMP"))


def test_no_filters_accept_everything():
    filters = FilterSet()

    assert filters.stages == ()
    assert filters.accepts(msg(retain=True))


def test_stages_run_in_order_and_stop_at_first_rejection():
    filters = FilterSet.from_patterns(topic_pattern="^x", payload_pattern="y", allow_retained=False)

    assert [stage.name for stage in filters.stages] == ["retained", "topic", "payload"]
    assert filters.rejecting_stage(msg("a", b"n", retain=True)) == "retained"
    assert filters.rejecting_stage(msg("a", b"y")) == "topic"
    assert filters.rejecting_stage(msg("x", b"n")) == "payload"
    assert filters.rejecting_stage(msg("x", b"y")) is None


def test_payload_filter_tolerates_invalid_utf8():
    filters = FilterSet.from_patterns(payload_pattern="ok")

    assert filters.accepts(msg(payload=b"\xff\xfe ok"))


def test_describe():
    filters = FilterSet.from_patterns(topic_pattern="t", allow_retained=False)

    assert filters.describe() == "topic=t  payload=none  retained=no"
