"""Mustache placeholder detection and rendering for call arguments."""

from __future__ import annotations

import re
from typing import Any, Mapping

import pystache

from ..protocol.framing import Reference

PLACEHOLDER_RE = re.compile(r"\{\{.+\}\}")

# Argument text goes on the wire verbatim, so no HTML escaping.
_renderer = pystache.Renderer(escape=lambda text: text, missing_tags="ignore")


def _text_of(arg: Any) -> Any:
    return arg.value if isinstance(arg, Reference) else arg


def contains_placeholder(arg: Any) -> bool:
    """Return True if the argument's text holds a ``{{key}}`` placeholder."""
    text = _text_of(arg)
    return isinstance(text, str) and PLACEHOLDER_RE.search(text) is not None


def render_text(template: str, context: Mapping[str, Any]) -> str:
    """Render ``template`` against ``context``; missing keys become ``""``."""
    return _renderer.render(template, dict(context))


def render(arg: Any, context: Mapping[str, Any]) -> Any:
    """Return ``arg`` with its placeholders replaced from ``context``.

    References keep their marker; non-text scalars come back unchanged.
    """
    if isinstance(arg, Reference):
        if isinstance(arg.value, str):
            return Reference(render_text(arg.value, context))
        return arg
    if isinstance(arg, str):
        return render_text(arg, context)
    return arg
