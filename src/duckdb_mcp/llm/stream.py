"""Assemble streamed model output into one string.

A Bedrock response stream is a sequence of events. Text arrives in
``{"chunk": {"bytes": b'{"delta": {"text": "..."}, ...}'}}`` events; other events
(message start/stop, metadata) carry no delta. Error events end the stream.
"""

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from typing import Any

logger = logging.getLogger(__name__)

# Exception members of the Bedrock ResponseStream union
TERMINAL_ERROR_EVENTS = (
    "internalServerException",
    "modelStreamErrorException",
    "modelTimeoutException",
    "serviceUnavailableException",
    "throttlingException",
    "validationException",
)


class ModelStreamError(Exception):
    """The model backend reported an error in the middle of a stream."""

    def __init__(self, kind: str, message: str):
        self.kind = kind
        super().__init__(f"{kind}: {message}")


def _raise_if_terminal(event: Mapping[str, Any]) -> None:
    for kind in TERMINAL_ERROR_EVENTS:
        if kind in event:
            detail = event[kind]
            message = detail.get("message", "") if isinstance(detail, Mapping) else str(detail)
            raise ModelStreamError(kind, message)


def decode_delta(event: Any) -> str | None:
    """Return the text delta carried by one stream event, if any.

    Events without a payload, payloads that are not UTF-8 JSON, and JSON
    without a ``delta.text`` string all yield None.
    """
    if not isinstance(event, Mapping):
        logger.debug(f"Skipping non-mapping stream event: {event!r}")
        return None

    chunk = event.get("chunk")
    payload = chunk.get("bytes") if isinstance(chunk, Mapping) else None
    if not payload:
        return None

    try:
        text = payload.decode("utf-8") if isinstance(payload, bytes | bytearray) else payload
        parsed = json.loads(text)
    except (UnicodeDecodeError, ValueError, TypeError) as e:
        logger.debug(f"Skipping malformed stream chunk: {e}")
        return None

    delta = parsed.get("delta") if isinstance(parsed, dict) else None
    value = delta.get("text") if isinstance(delta, dict) else None
    return value if isinstance(value, str) and value else None


async def iter_text_deltas(events: AsyncIterable[Any]) -> AsyncIterator[str]:
    """Yield the text deltas of a stream in arrival order.

    Raises:
        ModelStreamError: If the backend sends an error event
    """
    async for event in events:
        if isinstance(event, Mapping):
            _raise_if_terminal(event)
        delta = decode_delta(event)
        if delta is not None:
            yield delta


async def assemble_text(deltas: AsyncIterable[str]) -> str:
    """Concatenate deltas in arrival order once the stream ends."""
    parts: list[str] = []
    async for delta in deltas:
        parts.append(delta)
    return "".join(parts)


async def collect_completion(events: AsyncIterable[Any]) -> str:
    """Drain a raw event stream and return the full completion text."""
    return await assemble_text(iter_text_deltas(events))
