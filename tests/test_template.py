"""Tests for placeholder detection and rendering."""

from vista_broker_mcp.protocol.framing import Reference
from vista_broker_mcp.utils.template import contains_placeholder, render


def test_detects_placeholder_in_text():
    assert contains_placeholder("{{variable}}")
    assert contains_placeholder("prefix {{PATIENT_IEN}} suffix")


def test_detects_placeholder_in_reference():
    assert contains_placeholder(Reference("^TMP({{JOB}})"))


def test_plain_values_have_no_placeholder():
    assert not contains_placeholder("HELLO WORLD")
    assert not contains_placeholder("{single}")
    assert not contains_placeholder("{{}}")
    assert not contains_placeholder(2)


def test_render_text():
    assert render("{{variable}}", {"variable": "HELLO WORLD"}) == "HELLO WORLD"


def test_render_missing_key_is_empty():
    assert render("A{{missing}}B", {}) == "AB"


def test_render_numbers_as_text():
    assert render("{{IEN}}", {"IEN": 25}) == "25"


def test_render_does_not_escape():
    assert render("{{value}}", {"value": "A&B<C>"}) == "A&B<C>"


def test_render_reference_keeps_marker():
    original = Reference("{{variable}}")
    rendered = render(original, {"variable": "HELLO WORLD"})
    assert rendered == Reference("HELLO WORLD")
    assert original.value == "{{variable}}"


def test_render_passes_scalars_through():
    assert render(2, {"variable": "x"}) == 2
