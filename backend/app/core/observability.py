"""
Structured Event Logging
Single-line JSON events for log-based alerting
"""
import json
import logging
import time
from typing import Any, Dict, Optional

logger = logging.getLogger("app.events")

MAX_STRING_LENGTH = 500

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def _truncate(value: Any, max_length: int = MAX_STRING_LENGTH) -> Any:
    if isinstance(value, str):
        return value if len(value) <= max_length else value[:max_length] + "..."
    if isinstance(value, dict):
        return {k: _truncate(v, max_length) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_truncate(v, max_length) for v in value]
    return value


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = {}
    for key, value in data.items():
        if value is None:
            continue
        cleaned[key] = _drop_none(value) if isinstance(value, dict) else value
    return cleaned


def log_event(
    tag: str,
    stage: str,
    source: str,
    severity: str = "info",
    org_id: Optional[str] = None,
    call_id: Optional[str] = None,
    vapi_call_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Emit one canonical event line: {tag, ts, stage, source, severity, ...}.

    Tags such as "[CALL_START]" or "[ABUSE][RATE_LIMITED]" are stable and
    consumed by log-based alerts. Never raises.
    """
    try:
        record: Dict[str, Any] = {
            "tag": tag,
            "ts": int(time.time() * 1000),
            "stage": stage,
            "source": source,
            "severity": severity,
            "org_id": org_id,
            "call_id": call_id,
            "vapi_call_id": vapi_call_id,
        }
        if details:
            record["details"] = _truncate(details)
        line = json.dumps(_drop_none(record), default=str)
        logger.log(_LEVELS.get(severity, logging.INFO), line)
    except Exception as e:
        try:
            logger.error(json.dumps({
                "tag": "[LOG_ERROR]",
                "ts": int(time.time() * 1000),
                "stage": "system",
                "source": "system",
                "severity": "error",
                "details": {"original_tag": str(tag), "error": str(e)},
            }))
        except Exception:
            pass
