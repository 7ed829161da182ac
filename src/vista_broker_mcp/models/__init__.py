"""Data models for scripted calls, their results, and script files."""

from .call import (
    CallDefinition,
    CallOptions,
    CallState,
    Condition,
    ContextBinding,
    Response,
    Result,
)
