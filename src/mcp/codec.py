"""Wire codec for push-stream envelopes and side-channel JSON-RPC bodies.

Push frames use Server-Sent Events framing: one ``data:`` line carrying the
JSON envelope, terminated by a blank line::

    data: {"kind": "payload", "channelId": "conn_...", "body": {...}, "emittedAt": 1700000000000}

"""

import json
import logging
from typing import Any

from pydantic import ValidationError

from src.mcp.errors import MalformedFrame
from src.mcp.models import EnvelopeKind, JsonRpcRequest, JsonRpcResponse, PushEnvelope

logger = logging.getLogger(__name__)

DATA_FIELD = "data"
FRAME_TERMINATOR = "\n\n"


def dump_envelope(envelope: PushEnvelope) -> str:
    """Serialize an envelope to its JSON text."""
    return json.dumps(envelope.model_dump(mode="json"), separators=(",", ":"))


def encode_envelope(
    kind: EnvelopeKind | str, channel_id: str, body: Any = None
) -> bytes:
    """Encode an envelope as a self-delimited SSE frame."""
    envelope = PushEnvelope(kind=EnvelopeKind(kind), channelId=channel_id, body=body)
    return f"{DATA_FIELD}: {dump_envelope(envelope)}{FRAME_TERMINATOR}".encode("utf-8")


def _frame_payload(text: str) -> str:
    """Strip SSE framing, returning the joined data lines (or the text as-is)."""
    lines = text.strip("\r\n").splitlines()
    if not lines or not lines[0].startswith(f"{DATA_FIELD}:"):
        return text
    values = []
    for line in lines:
        name, _, value = line.partition(":")
        if name == DATA_FIELD:
            values.append(value[1:] if value.startswith(" ") else value)
    return "\n".join(values)


def decode_envelope(raw: str | bytes) -> PushEnvelope:
    """
    Decode a push frame into an envelope.

    Accepts either a whole ``data:`` frame or the bare JSON payload.

    Raises:
        MalformedFrame: On invalid JSON, a non-object payload, missing fields,
            or an unrecognized envelope kind.
    """
    try:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
    except UnicodeDecodeError as e:
        raise MalformedFrame(f"not UTF-8: {e}", raw) from e

    try:
        data = json.loads(_frame_payload(text))
    except json.JSONDecodeError as e:
        raise MalformedFrame(f"invalid JSON: {e}", raw) from e

    if not isinstance(data, dict):
        raise MalformedFrame("envelope must be a JSON object", raw)

    kind = data.get("kind")
    if kind not in {k.value for k in EnvelopeKind}:
        raise MalformedFrame(f"unknown envelope kind: {kind!r}", raw)

    try:
        return PushEnvelope.model_validate(data)
    except ValidationError as e:
        raise MalformedFrame(f"invalid envelope: {e}", raw) from e


def encode_message(message: JsonRpcRequest | JsonRpcResponse | dict[str, Any]) -> bytes:
    """Encode a JSON-RPC message for the side channel."""
    if isinstance(message, (JsonRpcRequest, JsonRpcResponse)):
        message = message.model_dump()
    return json.dumps(message).encode("utf-8")


def decode_message(raw: str | bytes) -> dict[str, Any]:
    """
    Decode a side-channel JSON-RPC body into a raw message object.

    Raises:
        MalformedFrame: On invalid JSON or a non-object payload.
    """
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedFrame(f"invalid JSON: {e}", raw) from e

    if not isinstance(data, dict):
        raise MalformedFrame("JSON-RPC message must be a JSON object", raw)
    return data


class FrameReader:
    """
    Incremental Server-Sent Events line parser.

    Feed it one line at a time (without the line terminator). It returns the
    accumulated ``data`` payload when a blank line ends a frame, otherwise
    None. Comment lines and ``event``/``id``/``retry`` fields are ignored.
    """

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed_line(self, line: str) -> str | None:
        line = line.rstrip("\r\n")
        if not line:
            if not self._data:
                return None
            payload = "\n".join(self._data)
            self._data = []
            return payload

        if line.startswith(":"):
            # keepalive comment
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == DATA_FIELD:
            self._data.append(value)
        else:
            logger.debug(f"Ignoring SSE field: {name}")
        return None
