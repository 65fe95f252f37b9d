from __future__ import annotations

import logging
from typing import Any

from service import logging_utils

_ACTIVITY_LOG = logging.getLogger("internships.activity")
_ERROR_LOG = logging.getLogger("internships.error")

# Keys that must never reach a log line, on top of logging_utils' substring list
_REDACT_KEYS = logging_utils.DEFAULT_REDACT_KEYS | {"x-api-key", "x_api_key", "github_token"}


def activity(record: dict[str, Any]) -> None:
    """
    Write a structured activity record (component/op/...) to the JSONL sink.
    Falls back to stdlib logging if the sink cannot be written.
    """
    payload = logging_utils.redact(record, _REDACT_KEYS)
    try:
        logging_utils.write_activity_log(payload)
    except OSError:
        _ACTIVITY_LOG.info("%s", payload)
        return
    _ACTIVITY_LOG.debug("%s.%s", payload.get("component", "?"), payload.get("op", "?"))


def error(record: dict[str, Any]) -> None:
    """Write a structured error record; mirrors it to stdlib logging at WARNING."""
    payload = logging_utils.redact(record, _REDACT_KEYS)
    try:
        logging_utils.write_error_log(payload)
    except OSError:
        _ERROR_LOG.error("%s", payload)
        return
    _ERROR_LOG.warning("%s.%s: %s", payload.get("component", "?"), payload.get("op", "?"), payload.get("error"))
