"""Decision events as single key=value log lines."""

from __future__ import annotations

from metagate.util.logger import logger


def _format_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value)
    if not text or any(ch.isspace() for ch in text) or '"' in text:
        return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'
    return text


def format_event(event: str, payload: dict[str, object]) -> str:
    parts = [f"event={event}"]
    parts.extend(f"{key}={_format_value(value)}" for key, value in payload.items() if value is not None)
    return " ".join(parts)


def log_event(event: str, **payload: object) -> None:
    logger.info("%s", format_event(event, payload))
