"""
Consumption of the beacon node event stream (server-sent events).
"""
import json
import logging
from typing import AsyncIterable, AsyncIterator, List, NamedTuple

from remote_validator.api.http.ir import (
    MALFORMED_PAYLOAD_ERRORS,
    parse_chain_reorg_event,
)
from remote_validator.typing import ReorgNotification

CHAIN_REORG_TOPIC = "chain_reorg"
DEFAULT_EVENT_TYPE = "message"

logger = logging.getLogger("remote_validator.api.http.events")


class ServerSentEvent(NamedTuple):
    event: str
    data: str


async def iter_server_sent_events(
    chunks: AsyncIterable[bytes],
) -> AsyncIterator[ServerSentEvent]:
    """
    Reassemble events from a raw ``text/event-stream`` body. Chunk boundaries
    may fall anywhere, including inside a line.
    """
    buffer = b""
    event_type = DEFAULT_EVENT_TYPE
    data_lines: List[str] = []
    async for chunk in chunks:
        buffer += chunk
        while True:
            raw_line, separator, buffer_tail = buffer.partition(b"\n")
            if not separator:
                break
            buffer = buffer_tail
            # undecodable bytes cannot form a valid event; they are dropped with it
            line = raw_line.rstrip(b"\r").decode("utf-8", errors="replace")

            if not line:
                if data_lines:
                    yield ServerSentEvent(event_type, "\n".join(data_lines))
                event_type = DEFAULT_EVENT_TYPE
                data_lines = []
            elif line.startswith(":"):
                # comment, used by servers as keep-alive
                continue
            else:
                name, _, value = line.partition(":")
                if value.startswith(" "):
                    value = value[1:]
                if name == "event":
                    event_type = value
                elif name == "data":
                    data_lines.append(value)


async def iter_reorg_notifications(
    chunks: AsyncIterable[bytes],
) -> AsyncIterator[ReorgNotification]:
    async for event in iter_server_sent_events(chunks):
        if event.event != CHAIN_REORG_TOPIC:
            continue
        try:
            yield parse_chain_reorg_event(json.loads(event.data))
        except MALFORMED_PAYLOAD_ERRORS as err:
            logger.error("dropping malformed %s event %r: %s", event.event, event.data, err)
