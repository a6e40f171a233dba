from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from intervention_engine.core.event_bus import (
    ClosureStageRecorded,
    DomainEvent,
    EventBus,
    InterventionCreated,
    InterventionTransitioned,
    QuoteReviewed,
    QuotesRequested,
    QuoteSubmitted,
    QuoteWithdrawn,
    SlotConfirmed,
    SlotResponded,
    SlotsProposed,
)
from intervention_engine.observability import observe_notification


@dataclass(frozen=True)
class Notification:
    recipient_id: str
    template: str
    team_id: str
    intervention_id: int | None
    data: Dict[str, Any] = field(default_factory=dict)


Sender = Callable[[Notification], None]

_TEMPLATES: Dict[type, str] = {
    InterventionCreated: "intervention_created",
    QuotesRequested: "quote_requested",
    QuoteSubmitted: "quote_received",
    QuoteWithdrawn: "quote_withdrawn",
    QuoteReviewed: "quote_reviewed",
    SlotsProposed: "slots_proposed",
    SlotResponded: "slot_response",
    SlotConfirmed: "slot_confirmed",
    ClosureStageRecorded: "closure_stage",
}


def _template_for(event: DomainEvent) -> str | None:
    if isinstance(event, InterventionTransitioned):
        return f"status_{event.action}"
    return _TEMPLATES.get(type(event))


class NotificationDispatcher:
    """Turn committed domain events into per-recipient notifications.

    Delivery is best-effort: a failing sender is logged and counted, never
    raised back into the workflow that produced the event.
    """

    def __init__(self, sender: Sender | None = None, *, enabled: bool = True) -> None:
        self._sender = sender or self._log_sender
        self.enabled = enabled
        self._logger = logging.getLogger("intervention_engine.notifications")

    def _log_sender(self, notification: Notification) -> None:
        self._logger.info(
            "notification_sent",
            extra={
                "recipient_id": notification.recipient_id,
                "template": notification.template,
                "intervention_id": notification.intervention_id,
            },
        )

    def register(self, bus: EventBus) -> "NotificationDispatcher":
        bus.subscribe_all(self.handle)
        return self

    def notifications_for(self, event: DomainEvent) -> List[Notification]:
        template = _template_for(event)
        if template is None:
            return []
        data = event.to_payload()
        return [
            Notification(
                recipient_id=recipient,
                template=template,
                team_id=event.team_id,
                intervention_id=getattr(event, "intervention_id", None),
                data=data,
            )
            for recipient in event.recipients
        ]

    def handle(self, event: DomainEvent) -> None:
        if not self.enabled:
            return
        for notification in self.notifications_for(event):
            try:
                self._sender(notification)
            except Exception:  # noqa: BLE001
                observe_notification(ok=False)
                self._logger.exception(
                    "notification_failed",
                    extra={
                        "recipient_id": notification.recipient_id,
                        "template": notification.template,
                        "event_id": event.event_id,
                    },
                )
            else:
                observe_notification(ok=True)
