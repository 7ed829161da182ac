"""Protocol layer: request/response frame building and parsing."""

from .framing import (
    Reference,
    build_request_frame,
    build_response_frame,
    parse_request_frame,
    parse_response_frame,
)
