"""Utility modules for the idempotency engine."""

from .headers import (
    KEY_HEADER,
    REPLAY_HEADER,
    VOLATILE_HEADERS,
    HeaderList,
    add_replay_headers,
    as_header_list,
    filter_response_headers,
    get_header_value,
)

__all__ = [
    "HeaderList",
    "as_header_list",
    "filter_response_headers",
    "add_replay_headers",
    "get_header_value",
    "VOLATILE_HEADERS",
    "REPLAY_HEADER",
    "KEY_HEADER",
]
