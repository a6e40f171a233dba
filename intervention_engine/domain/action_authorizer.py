from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Dict, List

from intervention_engine.domain.contracts import InterventionSnapshot
from intervention_engine.domain.status_machine import StatusStateMachine, TransitionRule
from intervention_engine.errors import AuthorizationDenied, ValidationFailed
from intervention_engine.observability import observe_authorization_denied
from intervention_engine.policies import GESTIONNAIRE, LOCATAIRE, PRESTATAIRE, normalize_role
from intervention_engine.ui_strings import action_label, confirm_message, disabled_message


_logger = logging.getLogger("intervention_engine.authorizer")

QUOTE_ACTIONS = frozenset({"submit_quote", "edit_quote", "cancel_quote", "view_quote"})


@dataclass(frozen=True)
class Action:
    key: str
    label: str
    requires_comment: bool = False
    confirmation_message: str | None = None
    disabled_reason: str | None = None
    badge: int | None = None

    @property
    def enabled(self) -> bool:
        return self.disabled_reason is None

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["enabled"] = self.enabled
        return data


def _quote_variant_allows(snapshot: InterventionSnapshot, action: str, actor_id: str) -> bool:
    own = snapshot.quote_of(actor_id)
    own_status = own.status if own else None
    if action == "submit_quote":
        return own_status in (None, "rejected", "cancelled")
    if action in ("edit_quote", "cancel_quote"):
        return own_status in ("pending", "sent")
    if action == "view_quote":
        return own_status == "accepted"
    return True


class ActionAuthorizer:
    """Decide which actions a given user may take on an intervention.

    The status machine says what a role may do from a status; this class adds
    the relationship checks (tenant of record, assigned provider) and the
    per-intervention details such as which quote variant applies or whether
    the action is temporarily disabled.
    """

    def __init__(self, state_machine: StatusStateMachine) -> None:
        self._machine = state_machine

    def _related(self, snapshot: InterventionSnapshot, rule: TransitionRule, role: str, actor_id: str) -> bool:
        if role == GESTIONNAIRE:
            # Managers only ever see interventions of their own team.
            return True
        if role == LOCATAIRE:
            return bool(actor_id) and actor_id == snapshot.tenant_user_id
        if role == PRESTATAIRE:
            if actor_id not in snapshot.provider_ids:
                return False
            if rule.action in QUOTE_ACTIONS:
                return _quote_variant_allows(snapshot, rule.action, actor_id)
            return True
        return False

    def _build(self, snapshot: InterventionSnapshot, rule: TransitionRule, actor_id: str) -> Action:
        disabled_reason: str | None = None
        badge: int | None = None

        if rule.action in ("approve_quote", "reject_quote"):
            reviewable = snapshot.reviewable_quotes()
            if not snapshot.received_quotes():
                disabled_reason = disabled_message("no_quote_received")
            elif not reviewable:
                disabled_reason = disabled_message("no_quote_to_review")
            else:
                badge = len(reviewable)
        elif rule.action == "confirm_slot":
            open_slots = snapshot.open_slots()
            if not open_slots:
                disabled_reason = disabled_message("no_open_slot")
            else:
                badge = len(open_slots)
        elif rule.action == "respond_slot":
            answerable = [slot for slot in snapshot.open_slots() if slot.proposed_by != actor_id]
            unanswered = [slot for slot in answerable if slot.response_of(actor_id) is None]
            if not answerable:
                disabled_reason = disabled_message("no_open_slot")
            elif unanswered:
                badge = len(unanswered)
        elif rule.action == "request_quotes":
            pending = len(snapshot.outstanding_request_provider_ids)
            badge = pending or None

        return Action(
            key=rule.action,
            label=action_label(rule.action),
            requires_comment=rule.requires_comment,
            confirmation_message=confirm_message(rule.confirmation_key) if rule.confirmation_key else None,
            disabled_reason=disabled_reason,
            badge=badge,
        )

    def evaluate_actions(self, snapshot: InterventionSnapshot, role: str, actor_id: str) -> List[Action]:
        normalized_role = normalize_role(role)
        actions: List[Action] = []
        for rule in self._machine.rules_for(snapshot.status, normalized_role):
            if not self._related(snapshot, rule, normalized_role, actor_id):
                continue
            actions.append(self._build(snapshot, rule, actor_id))
        return actions

    def authorize(self, snapshot: InterventionSnapshot, role: str, actor_id: str, action: str) -> Action:
        normalized_role = normalize_role(role)
        rule = self._machine.rule(snapshot.status, action, normalized_role)
        if not self._related(snapshot, rule, normalized_role, actor_id):
            observe_authorization_denied(action)
            _logger.warning(
                "authorization_denied",
                extra={
                    "intervention_id": snapshot.id,
                    "status": snapshot.status,
                    "action": action,
                    "role": normalized_role,
                    "actor_id": actor_id,
                },
            )
            raise AuthorizationDenied(payload={"action": action, "status": snapshot.status})
        built = self._build(snapshot, rule, actor_id)
        if not built.enabled:
            raise ValidationFailed(
                code="action_disabled",
                message_key="action_disabled",
                fields={"action": built.disabled_reason or action},
            )
        return built
