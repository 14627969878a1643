"""
Wire codec for the event envelope.

Envelope (JSON, all topics):

    {"eventType": "OrderCreated", "version": 1, "eventId": "...",
     <topic-specific fields>, "headers": {"correlationId": "...", ...}}

decode_event() validates against the registered schema and raises
PoisonEventError for anything it cannot turn into a known shape.
"""

import json
from typing import Any

from pydantic import ValidationError

from orderflow.core.exceptions import PoisonEventError
from orderflow.events.schemas import CURRENT_VERSIONS, WireModel, schema_for
from orderflow.events.types import EVENT_TYPE_TOPICS, TOPIC_EVENT_TYPES, Event

_ENVELOPE_KEYS = ("eventType", "version", "eventId", "headers")


def build_event(topic: str, key: str, body: WireModel, headers: dict[str, str] | None = None) -> Event:
    """
    Build an Event for `topic` from a payload model.

    The model's event_id becomes the envelope eventId.
    """
    event_type = TOPIC_EVENT_TYPES[topic]
    payload = body.model_dump(mode="json", by_alias=True, exclude={"event_id"})
    return Event(
        topic=topic,
        key=key,
        event_type=event_type,
        payload=payload,
        event_id=body.event_id,  # type: ignore[attr-defined]
        version=CURRENT_VERSIONS[event_type],
        headers=dict(headers or {}),
    )


def encode_event(event: Event) -> bytes:
    """Serialize an event to its JSON envelope."""
    envelope: dict[str, Any] = {
        "eventType": event.event_type,
        "version": event.version,
        "eventId": event.event_id,
        **event.payload,
        "headers": event.headers,
    }
    return json.dumps(envelope, default=str).encode("utf-8")


def decode_event(topic: str, key: str | None, raw: bytes | str) -> Event:
    """
    Decode and validate a JSON envelope received on `topic`.

    Raises:
        PoisonEventError: on malformed JSON, missing envelope fields, an unknown
            (eventType, version) pair, an eventType that does not belong on
            this topic, or a payload failing schema validation
    """
    try:
        envelope = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise PoisonEventError(f"undecodable JSON: {e}", topic, _as_bytes(raw)) from e

    if not isinstance(envelope, dict):
        raise PoisonEventError("envelope is not an object", topic, _as_bytes(raw))

    event_type = envelope.get("eventType")
    version = envelope.get("version")
    if not isinstance(event_type, str) or not isinstance(version, int):
        raise PoisonEventError("missing eventType or version", topic, _as_bytes(raw))

    if EVENT_TYPE_TOPICS.get(event_type) != topic:
        raise PoisonEventError(f"eventType {event_type} not valid on {topic}", topic, _as_bytes(raw))

    model = schema_for(event_type, version)
    if model is None:
        raise PoisonEventError(
            f"no schema for {event_type} v{version}", topic, _as_bytes(raw)
        )

    headers = envelope.get("headers") or {}
    if not isinstance(headers, dict):
        raise PoisonEventError("headers is not an object", topic, _as_bytes(raw))

    body = {k: v for k, v in envelope.items() if k not in ("eventType", "version", "headers")}
    try:
        parsed = model.model_validate(body)
    except ValidationError as e:
        raise PoisonEventError(
            f"schema validation failed: {e.error_count()} error(s)", topic, _as_bytes(raw)
        ) from e

    payload = parsed.model_dump(mode="json", by_alias=True, exclude={"event_id"})
    return Event(
        topic=topic,
        key=key or payload.get("orderId", ""),
        event_type=event_type,
        payload=payload,
        event_id=parsed.event_id,  # type: ignore[attr-defined]
        version=version,
        headers={str(k): str(v) for k, v in headers.items()},
    )


def parse_payload(event: Event) -> WireModel:
    """Typed view of an already-decoded event's payload."""
    model = schema_for(event.event_type, event.version)
    if model is None:
        raise PoisonEventError(
            f"no schema for {event.event_type} v{event.version}", event.topic
        )
    try:
        return model.model_validate({**event.payload, "eventId": event.event_id})
    except ValidationError as e:
        raise PoisonEventError(f"schema validation failed: {e.error_count()} error(s)", event.topic) from e


def _as_bytes(raw: bytes | str) -> bytes:
    return raw if isinstance(raw, bytes) else raw.encode("utf-8", errors="replace")
