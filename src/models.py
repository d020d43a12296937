"""
Video Analytics Models
Wire models for the SDK, plus the lenient batch shape the ingestion sink decodes.

Field names are snake_case in Python and camelCase on the wire.
"""

from typing import Any, Dict, List, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from utils import generate_uuid, iso_now


class WireModel(BaseModel):
    """Frozen model serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class PlaybackState(WireModel):
    """Snapshot of a playback object taken when an occurrence is observed."""

    current_time: Optional[float] = None
    duration: Optional[float] = None
    paused: Optional[bool] = None
    ended: Optional[bool] = None
    playback_rate: Optional[float] = None
    volume: Optional[float] = None
    muted: Optional[bool] = None
    fullscreen: bool = False
    network_state: Optional[int] = None
    ready_state: Optional[int] = None


class TechnicalInfo(WireModel):
    user_agent: Optional[str] = None
    screen_resolution: Optional[str] = None
    viewport_size: Optional[str] = None
    player_size: Optional[str] = None
    connection_type: Optional[str] = None


class PageContext(WireModel):
    page_url: Optional[str] = None
    referrer: Optional[str] = None
    page_title: Optional[str] = None


class PageEnvironment(WireModel):
    """Host page details supplied by the integration layer."""

    user_agent: str = ""
    screen_resolution: str = ""
    viewport_size: str = ""
    connection_type: Optional[str] = None
    page_url: str = ""
    referrer: str = ""
    page_title: str = ""


class Event(WireModel):
    """One playback occurrence. Immutable once created."""

    event_name: str
    video_id: Optional[str] = None
    timestamp: str = Field(default_factory=iso_now)
    session_id: str
    user_id: Optional[str] = None
    anonymous_id: str
    playback_state: Optional[PlaybackState] = None
    technical: Optional[TechnicalInfo] = None
    context: PageContext = Field(default_factory=PageContext)
    custom_data: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if data["customData"] is None:
            del data["customData"]
        return data


class EventBatch(WireModel):
    """Unit of transmission. Every send attempt gets a fresh batch_id."""

    client_id: str
    api_key: Optional[str] = None
    session_id: str
    batch_id: str = Field(default_factory=generate_uuid)
    events: List[Event]
    timestamp: str = Field(default_factory=iso_now)
    is_retry: bool = False
    retry_attempt: Optional[int] = None

    @classmethod
    def assemble(
        cls,
        client_id: str,
        api_key: Optional[str],
        session_id: str,
        events: List[Event],
        is_retry: bool = False,
        retry_attempt: Optional[int] = None
    ) -> "EventBatch":
        """Build a new batch with a fresh batch_id and assembly timestamp."""
        return cls(
            client_id=client_id,
            api_key=api_key,
            session_id=session_id,
            events=list(events),
            is_retry=is_retry,
            retry_attempt=retry_attempt if is_retry else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clientId": self.client_id,
            "apiKey": self.api_key,
            "sessionId": self.session_id,
            "batchId": self.batch_id,
            "events": [event.to_dict() for event in self.events],
            "timestamp": self.timestamp,
            "isRetry": self.is_retry,
            **({"retryAttempt": self.retry_attempt} if self.is_retry else {}),
        }

    def to_json(self) -> bytes:
        return orjson.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: bytes) -> "EventBatch":
        return cls.model_validate(orjson.loads(raw))


class ReceivedBatch(BaseModel):
    """
    A batch as the ingestion sink accepts it.

    Identifiers are optional and events are kept exactly as sent, so the
    stored record never gains defaults or loses keys the client supplied.
    Only a body that is not a JSON object, or whose fields have the wrong
    JSON type, fails validation.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    client_id: Optional[str] = None
    api_key: Optional[str] = None
    session_id: Optional[str] = None
    batch_id: Optional[str] = None
    timestamp: Optional[str] = None
    is_retry: Optional[bool] = None
    retry_attempt: Optional[int] = None
    events: Optional[List[Dict[str, Any]]] = None
