"""MCP server entry point for the VistA RPC Broker client.

Exposes the frame codec and the scripted call runner as tools via the
Model Context Protocol using the official Python MCP SDK with stdio
transport.
"""

from __future__ import annotations

import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .client import BrokerClient
from .config import BrokerSettings, log_level
from .errors import BrokerError
from .models.call import CallDefinition, Result
from .models.script import build_client, export_results, load_script
from .protocol.framing import (
    encrypt_argument,
    parse_request_frame,
    parse_response_frame,
)

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "vista-broker",
    instructions="Build, parse, and run scripted VistA RPC Broker calls",
)


def _frame_bytes(frame: str) -> bytes:
    """Frames travel through MCP as text, one code point per byte."""
    return frame.encode("latin-1")


def _frame_text(frame: bytes) -> str:
    return frame.decode("latin-1")


def _run_summary(client: BrokerClient, results: list[Result]) -> dict[str, Any]:
    return {
        "results": [r.to_dict() for r in results],
        "context": client.context,
        "count": len(results),
    }


async def _run(client: BrokerClient) -> dict[str, Any]:
    results: list[Result] = []
    try:
        await client.run(results.append)
    except (BrokerError, OSError) as e:
        summary = _run_summary(client, results)
        summary["error"] = str(e)
        return summary
    return _run_summary(client, results)


# ─── CODEC TOOLS ──────────────────────────────────────────────────────

@mcp.tool()
def build_request(
    name: str,
    args: list[Any] | None = None,
) -> dict[str, Any]:
    """Build the wire frame for a remote procedure call.

    Args:
        name: Remote procedure name, e.g. "XUS SIGNON SETUP".
        args: Arguments. Plain values are sent literally; objects of the
              form {"type": "REFERENCE", "value": "^TMP($J)"} are sent by
              reference and {"type": "ENCRYPT", "value": ...} encrypted.
    """
    try:
        call = CallDefinition.create(name, args or [])
    except (BrokerError, ValueError) as e:
        return {"error": str(e)}
    if call.raw is None:
        return {"error": "Arguments contain placeholders; run them with a context"}
    return {"name": call.name, "frame": _frame_text(call.raw), "length": len(call.raw)}


@mcp.tool()
def parse_request(frame: str) -> dict[str, Any]:
    """Recover the procedure name and arguments from a request frame.

    Args:
        frame: Request frame text, e.g. "[XWB]11302\\u00051.108\\u0004TEST54f\\u0004".
    """
    try:
        name, args = parse_request_frame(_frame_bytes(frame))
    except (BrokerError, UnicodeError) as e:
        return {"error": str(e)}
    return {"name": name, "args": args}


@mcp.tool()
def parse_response(frame: str) -> dict[str, Any]:
    """Parse a response frame into a single value or a list of lines.

    Args:
        frame: Response frame text, starting with two NUL bytes and ending
               with \\u0004.
    """
    try:
        value = parse_response_frame(_frame_bytes(frame))
    except (BrokerError, UnicodeError) as e:
        return {"error": str(e)}
    return {"value": value, "lines": value if isinstance(value, list) else [value]}


@mcp.tool()
def encrypt(plaintext: str) -> dict[str, Any]:
    """Encrypt a value (e.g. an access;verify pair) with the configured pad table."""
    try:
        return {"ciphertext": encrypt_argument(plaintext)}
    except BrokerError as e:
        return {"error": str(e)}


# ─── RUN TOOLS ────────────────────────────────────────────────────────

@mcp.tool()
async def run_calls(
    calls: list[Any],
    host: str | None = None,
    port: int | None = None,
    context: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Run a sequence of calls against a broker and return every result.

    Args:
        calls: Call objects {"name", "args", "repeat", "conditions",
               "context"} or raw request frames.
        host: Broker host (default from VISTA_HOST or localhost).
        port: Broker port (default from VISTA_PORT or 9430).
        context: Initial values for {{placeholder}} substitution.
    """
    settings = BrokerSettings.from_dict({"host": host, "port": port})
    try:
        client = BrokerClient(settings.host, settings.port, context=context)
        client.load(calls)
    except (BrokerError, ValueError, KeyError, TypeError) as e:
        return {"error": f"Invalid call list: {e}"}
    return await _run(client)


@mcp.tool()
async def run_script(
    script_path: str,
    output_path: str | None = None,
) -> dict[str, Any]:
    """Run a JSON call script and optionally save the results.

    Args:
        script_path: Path to a script with "vista", "context", and "rpcs" keys.
        output_path: Optional path for a JSON results file.
    """
    try:
        script = load_script(script_path)
        client = build_client(script)
    except (BrokerError, OSError, ValueError, KeyError, TypeError) as e:
        return {"error": str(e)}

    summary = await _run(client)
    if output_path:
        written = export_results(client.get_results(), output_path)
        summary["output_path"] = str(written)
    return summary


# ─── MCP RESOURCES ────────────────────────────────────────────────────

@mcp.resource("vista://protocol/frame-format")
def resource_frame_format() -> str:
    """Broker request/response frame layout."""
    return """Request:  [XWB] 1130 2 <len>1.108 <len><name> 5 <params> \\x04
  <len> is one raw byte holding the length of what follows.
  <params> is 4f for no arguments, otherwise per argument:
    <flag><3-digit byte length><value>f   (flag 0 literal, 1 reference)
Response: \\x00 \\x00 <lines joined by CR LF> \\x04"""


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def draft_script(goal: str) -> str:
    """Guide the AI to write a call script for a broker session.

    Args:
        goal: What the session should accomplish.
    """
    return f"""Write a call script that will: {goal}

A script is JSON with "vista" (host, port), "context" and "rpcs".
Each rpc is {{"name", "args", "repeat", "conditions", "context"}}:
- Use "{{{{KEY}}}}" in args to substitute context values.
- Use "context": [{{"name": "KEY", "index": 0, "field": 1}}] to capture
  a response line (index) and ^-piece (field) into the context.
- Use "conditions": [{{"name": "KEY"}}] to send a call only when KEY is set.

Sign-on usually starts with TCPConnect, XUS SIGNON SETUP, XUS AV CODE
(with an ENCRYPT argument) and XWB CREATE CONTEXT, and ends with #BYE#.

Use the run_script tool to execute it."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=log_level())
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
