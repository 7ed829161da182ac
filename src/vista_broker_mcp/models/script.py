"""Call script files and result export.

A script is a JSON document::

    {
        "vista": {"host": "localhost", "port": 9430},
        "context": {"PATIENT_IEN": "25"},
        "rpcs": [
            {"name": "XUS SIGNON SETUP", "args": []},
            {"name": "ORWPT SELECT", "args": ["{{PATIENT_IEN}}"]},
            "[XWB]11302\\u00051.108\\u000dXUS INTRO MSG54f\\u0004"
        ]
    }

Entries in ``rpcs`` are call mappings (``name``, ``args`` and options) or
raw request frames.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from ..config import BrokerSettings
from ..errors import ScriptError
from .call import Result

if TYPE_CHECKING:
    from ..client import BrokerClient

logger = logging.getLogger(__name__)


@dataclass
class Script:
    settings: BrokerSettings = field(default_factory=BrokerSettings)
    context: dict[str, Any] = field(default_factory=dict)
    calls: list[Any] = field(default_factory=list)


def parse_script(data: Mapping[str, Any]) -> Script:
    """Validate a decoded script document.

    Raises:
        ScriptError: If the document does not have the expected shape.
    """
    if not isinstance(data, Mapping):
        raise ScriptError(f"Script must be an object, got {type(data).__name__}")

    calls = data.get("rpcs", [])
    if not isinstance(calls, list):
        raise ScriptError("'rpcs' must be a list")
    for i, entry in enumerate(calls):
        if isinstance(entry, str):
            continue
        if not isinstance(entry, Mapping) or not entry.get("name"):
            raise ScriptError(f"rpcs[{i}] must be a raw frame or an object with a name")

    context = data.get("context") or {}
    if not isinstance(context, Mapping):
        raise ScriptError("'context' must be an object")

    return Script(
        settings=BrokerSettings.from_dict(data.get("vista")),
        context=dict(context),
        calls=list(calls),
    )


def load_script(path: str | Path) -> Script:
    """Read and validate a script file.

    Raises:
        ScriptError: If the file is not valid JSON or not a valid script.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ScriptError(f"Invalid JSON in {path}: {e}") from e
    script = parse_script(data)
    logger.info("Loaded %d calls from %s", len(script.calls), path)
    return script


def build_client(script: Script) -> BrokerClient:
    """Create a :class:`~vista_broker_mcp.client.BrokerClient` loaded with the script."""
    from ..client import BrokerClient

    client = BrokerClient(
        script.settings.host, script.settings.port, context=script.context
    )
    return client.load(script.calls)


def results_to_json(results: Iterable[Result]) -> str:
    return json.dumps([r.to_dict() for r in results], indent=4, default=str)


def export_results(results: Iterable[Result], path: str | Path) -> Path:
    """Write results to a JSON file.

    Returns:
        The path written to.
    """
    path = Path(path)
    path.write_text(results_to_json(results), encoding="utf-8")
    return path
