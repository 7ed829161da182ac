"""Tests for call definitions: factories, requests, responses, and accessors."""

import pytest

from vista_broker_mcp.models.call import (
    CallDefinition,
    CallOptions,
    Condition,
    ContextBinding,
)
from vista_broker_mcp.protocol.framing import Reference


def test_create_without_args():
    call = CallDefinition.create("TEST")
    assert call.name == "TEST"
    assert call.args == []
    assert call.raw == b"[XWB]11302\x051.108\x04TEST54f\x04"


def test_create_from_raw():
    call = CallDefinition.from_raw(
        "[XWB]11302\x051.108\rGET USER INFO50009100000101f0019SOME^MORESTUFF^heref\x04"
    )
    assert call.name == "GET USER INFO"
    assert call.args == ["100000101", "SOME^MORESTUFF^here"]
    assert call.raw.startswith(b"[XWB]")


def test_invalid_arg_type_reduces_to_value():
    call = CallDefinition.create(
        "INVALID ARG TYPE", [{"type": "INVALID", "value": "DATA EXISTS"}]
    )
    assert call.args == ["DATA EXISTS"]


def test_reference_arg_keeps_marker():
    call = CallDefinition.create("TEST", [{"type": "REFERENCE", "value": "HELLO WORLD"}])
    assert call.args == [Reference("HELLO WORLD")]
    assert call.raw == b"[XWB]11302\x051.108\x04TEST51011HELLO WORLDf\x04"


def test_encrypt_arg_is_encrypted_once(cipher):
    call = CallDefinition.create("XUS AV CODE", [{"type": "ENCRYPT", "value": "FAKEDOC1;1DOC"}])
    [encrypted] = call.args
    assert encrypted != "FAKEDOC1;1DOC"
    assert cipher.decrypt(encrypted) == "FAKEDOC1;1DOC"
    assert call.raw is not None


def test_templated_call_has_no_raw_frame():
    call = CallDefinition.create("TEST", ["{{variable}}"])
    assert call.raw is None
    assert call.is_templated

    ref = CallDefinition.create("ANOTHER", [{"type": "REFERENCE", "value": "{{variable}}"}])
    assert ref.raw is None


def test_get_request_standard():
    call = CallDefinition.create("TEST", ["HELLO WORLD", 2])
    request = call.get_request()
    assert request == b"[XWB]11302\x051.108\x04TEST50011HELLO WORLDf00012f\x04"
    assert call.state.started is not None
    assert call.state.stopped is None
    assert call.state.iterations == 1
    assert call.state.request == request


def test_get_request_templated():
    call = CallDefinition.create("TEST", ["{{variable}}", 2])
    request = call.get_request({"variable": "HELLO WORLD"})
    assert request == b"[XWB]11302\x051.108\x04TEST50011HELLO WORLDf00012f\x04"
    assert call.state.arguments == ["HELLO WORLD", 2]


def test_get_request_templated_reference():
    call = CallDefinition.create("TEST", [{"type": "REFERENCE", "value": "{{variable}}"}])
    request = call.get_request({"variable": "HELLO WORLD"})
    assert request == b"[XWB]11302\x051.108\x04TEST51011HELLO WORLDf\x04"
    # The definition itself stays templated for the next run
    assert call.args == [Reference("{{variable}}")]


def test_set_raw_response():
    call = CallDefinition.create("TEST", ["HELLO WORLD", 2])
    call.get_request()
    result = call.set_raw_response(b"\x00\x001\x04")

    assert call.results == [result]
    assert result.response.raw == b"\x00\x001\x04"
    assert result.response.value == "1"
    assert result.iteration == 1
    assert result.duration >= 0.0
    assert result.timestamp is not None
    assert call.state.stopped is not None


def test_set_value_response():
    call = CallDefinition.create("TEST", ["HELLO WORLD", 2])
    call.get_request()
    result = call.set_response(12345)
    assert result.response.raw == b"\x00\x0012345\x04"
    assert result.response.value == 12345


def test_response_without_request():
    call = CallDefinition.create("TEST", ["HELLO WORLD", 2])
    result = call.set_response(12345)
    assert result.duration == 0.0
    assert result.timestamp is None
    assert result.request is None


def test_is_complete():
    call = CallDefinition.create("TEST", ["HELLO WORLD", 2])
    call.get_request()
    call.set_response(12345)
    assert call.is_complete()

    repeater = CallDefinition.create("TEST", [], {"repeat": 5})
    repeater.get_request()
    repeater.set_response(12345)
    assert not repeater.is_complete()


def test_repeat_reuses_cached_frame():
    call = CallDefinition.create("XWB IM HERE", [], {"repeat": 2})
    first = call.get_request()
    second = call.get_request()
    assert first is second is call.raw
    assert call.is_complete()


def test_last_and_pop_result():
    call = CallDefinition.create("TEST", ["HELLO WORLD", 2])
    assert call.last_result() is None
    assert call.pop_last_result() is None

    call.get_request()
    result = call.set_response(12345)
    assert call.last_result() is result
    assert call.pop_last_result() is result
    assert call.results == []


def test_reset_clears_state_and_results():
    call = CallDefinition.create("TEST")
    call.get_request()
    call.set_response("1")
    call.reset()
    assert call.state.iterations == 0
    assert call.results == []


def test_options_from_script_keys():
    options = CallOptions.from_dict(
        {
            "repeat": 2,
            "conditions": [{"name": "NOPE", "value": 100}, {"name": "SET"}],
            "context": [{"name": "SIXTH", "index": 1, "field": 2, "handler": "split"}],
        }
    )
    assert options.repeat == 2
    assert options.conditions == (Condition("NOPE", 100), Condition("SET"))
    assert options.context == (ContextBinding("SIXTH", index=1, field=2, handler="split"),)


def test_repeat_must_be_positive():
    with pytest.raises(ValueError):
        CallOptions(repeat=0)


def test_condition_holds():
    assert Condition("KEY").holds({"KEY": "anything"})
    assert not Condition("KEY").holds({})
    assert Condition("KEY", 10000).holds({"KEY": 10000})
    assert not Condition("KEY", 10000).holds({})
    assert not Condition("KEY", 10000).holds({"KEY": "10000"})


def test_result_to_dict_is_text():
    call = CallDefinition.create("TEST", [{"type": "REFERENCE", "value": "^TMP"}])
    call.get_request()
    data = call.set_raw_response(b"\x00\x00A\r\nB\r\n\x04").to_dict()
    assert data["name"] == "TEST"
    assert data["args"] == ["^TMP"]
    assert data["response"]["value"] == ["A", "B"]
    assert data["raw"].startswith("[XWB]")
