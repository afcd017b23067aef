from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Iterable

from agentd.sessions.schema import Message

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        payload = {
            "ts": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(verbose: bool = False, quiet: bool = False, log_format: str = "text") -> None:
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_format == "json":
        handlers[0].setFormatter(JsonFormatter())
        logging.basicConfig(level=level, handlers=handlers, force=True)
    else:
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            force=True,
        )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


def _preview(text: str) -> str:
    text = " ".join(text.split())
    if len(text) > PREVIEW_CHARS:
        return text[: PREVIEW_CHARS - 3] + "..."
    return text


def log_conversation(session_id: int, messages: Iterable[Message], since: str | None = None) -> int:
    """Log messages newer than `since` (ISO timestamp). Returns how many were logged."""
    count = 0
    for message in messages:
        if since and message.ts <= since:
            continue
        count += 1
        if message.role == "user":
            logger.info(f"[{session_id}] user: {_preview(message.content)}")
        elif message.role == "assistant":
            if message.content:
                logger.info(f"[{session_id}] assistant: {_preview(message.content)}")
            for call in message.tool_calls or []:
                logger.info(
                    f"[{session_id}] tool call {call.function_name}({_preview(call.arguments_json)}) #{call.id}"
                )
        elif message.role == "tool":
            logger.debug(f"[{session_id}] tool result #{message.tool_call_id}: {_preview(message.content)}")
    return count
