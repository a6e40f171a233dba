from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, List, Tuple, Type

from intervention_engine.observability import observe_domain_event


EventHandler = Callable[["DomainEvent"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)
    team_id: str = ""
    actor_id: str | None = None
    recipients: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        normalized_event_id = str(self.event_id or "").strip() or uuid.uuid4().hex
        normalized_occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if normalized_occurred_at.tzinfo is None:
            normalized_occurred_at = normalized_occurred_at.replace(tzinfo=timezone.utc)
        normalized_occurred_at = normalized_occurred_at.astimezone(timezone.utc)

        object.__setattr__(self, "event_id", normalized_event_id)
        object.__setattr__(self, "occurred_at", normalized_occurred_at)
        object.__setattr__(self, "team_id", str(self.team_id or "").strip() or "unknown")
        object.__setattr__(self, "recipients", tuple(r for r in dict.fromkeys(self.recipients or ()) if r))

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"event_type": type(self).__name__}
        for key, value in asdict(self).items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat().replace("+00:00", "Z")
            elif isinstance(value, tuple):
                payload[key] = list(value)
            else:
                payload[key] = value
        return payload


@dataclass(frozen=True, kw_only=True)
class InterventionCreated(DomainEvent):
    intervention_id: int
    reference: str
    tenant_user_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class InterventionTransitioned(DomainEvent):
    intervention_id: int
    action: str
    from_status: str
    to_status: str
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class QuotesRequested(DomainEvent):
    intervention_id: int
    provider_ids: Tuple[str, ...] = ()
    deadline: str | None = None


@dataclass(frozen=True, kw_only=True)
class QuoteSubmitted(DomainEvent):
    intervention_id: int
    quote_id: int
    provider_id: str
    revised: bool = False


@dataclass(frozen=True, kw_only=True)
class QuoteWithdrawn(DomainEvent):
    intervention_id: int
    quote_id: int
    provider_id: str


@dataclass(frozen=True, kw_only=True)
class QuoteReviewed(DomainEvent):
    intervention_id: int
    quote_id: int
    provider_id: str
    decision: str
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class SlotsProposed(DomainEvent):
    intervention_id: int
    slot_ids: Tuple[int, ...] = ()
    proposer_role: str = ""


@dataclass(frozen=True, kw_only=True)
class SlotResponded(DomainEvent):
    intervention_id: int
    slot_id: int
    response: str


@dataclass(frozen=True, kw_only=True)
class SlotConfirmed(DomainEvent):
    intervention_id: int
    slot_id: int
    slot_date: str = ""


@dataclass(frozen=True, kw_only=True)
class ClosureStageRecorded(DomainEvent):
    intervention_id: int
    stage: str
    cycle: int = 0
    outcome: str = ""


class EventBus:
    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("intervention_engine")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        self.subscribe(DomainEvent, handler)

    def publish(self, event: DomainEvent) -> None:
        observe_domain_event(type(event).__name__)
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
            handlers.extend(h for h in self._handlers.get(DomainEvent, []) if h not in handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                self._logger.exception("event_handler_failed", extra={"event_type": type(event).__name__})

    def publish_all(self, events: List[DomainEvent]) -> None:
        for event in events:
            self.publish(event)


_DEFAULT_EVENT_BUS = EventBus()


def get_event_bus() -> EventBus:
    return _DEFAULT_EVENT_BUS
