from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Mapping

from intervention_engine.application.closure_service import ClosureService
from intervention_engine.application.quote_service import QuoteService
from intervention_engine.application.scheduling_service import SchedulingService
from intervention_engine.application.workflow_support import WorkflowSupport
from intervention_engine.core.event_bus import DomainEvent, EventBus, InterventionCreated
from intervention_engine.domain.checklists import INTERVENTION_CREATE_SCHEMA, ensure_valid
from intervention_engine.domain.contracts import (
    InterventionCreateInput,
    ManagerFinalizationInput,
    QuoteRequestInput,
    QuoteReviewInput,
    QuoteSubmissionInput,
    ServiceOutput,
    SlotResponseInput,
    TenantValidationInput,
    WorkCompletionInput,
    slot_proposals_from_payload,
)
from intervention_engine.domain.policy import EnginePolicy
from intervention_engine.domain.status_machine import INITIAL_STATUS
from intervention_engine.errors import InvalidTransition, ValidationFailed
from intervention_engine.policies import GESTIONNAIRE, LOCATAIRE, Actor, require_roles
from intervention_engine.ui_strings import success_message


PLAIN_ACTIONS = frozenset({"approve", "reject", "start_planning", "start_work", "reschedule", "cancel", "remind_tenant"})


def _required_id(payload: Mapping[str, Any], key: str) -> int:
    try:
        return int(payload.get(key))
    except (TypeError, ValueError):
        raise ValidationFailed(fields={key: "identifiant requis"}) from None


def _text(payload: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = str(payload.get(key) or "").strip()
        if value:
            return value
    return None


def _required_text(payload: Mapping[str, Any], key: str) -> str:
    value = _text(payload, key)
    if value is None:
        raise ValidationFailed(fields={key: "champ obligatoire"})
    return value


class InterventionService(WorkflowSupport):
    def __init__(self, policy: EnginePolicy | None = None, event_bus: EventBus | None = None) -> None:
        super().__init__(policy=policy, event_bus=event_bus)
        self.quotes = QuoteService(policy=self.policy, event_bus=self.event_bus)
        self.scheduling = SchedulingService(policy=self.policy, event_bus=self.event_bus)
        self.closure = ClosureService(policy=self.policy, event_bus=self.event_bus)

    def create_intervention(self, db, actor: Actor, create_input: InterventionCreateInput) -> ServiceOutput:
        require_roles(actor, GESTIONNAIRE, LOCATAIRE)
        tenant_user_id = actor.user_id if actor.role == LOCATAIRE else create_input.tenant_user_id
        ensure_valid(INTERVENTION_CREATE_SCHEMA, asdict(create_input))

        events: List[DomainEvent] = []
        with db.transaction():
            repos = self.repositories(actor)
            intervention_id, reference = repos.interventions.create(
                db,
                title=create_input.title,
                description=create_input.description,
                tenant_user_id=tenant_user_id,
                intervention_type=create_input.intervention_type,
                urgency=create_input.urgency,
                lot_reference=create_input.lot_reference,
                building_reference=create_input.building_reference,
                created_by=actor.user_id,
                status=INITIAL_STATUS,
            )
            if actor.role == GESTIONNAIRE:
                repos.assignments.assign(db, intervention_id=intervention_id, user_id=actor.user_id, role=GESTIONNAIRE)
            repos.status_events.add_event(
                db,
                entity="intervention",
                entity_id=intervention_id,
                from_status=None,
                to_status=INITIAL_STATUS,
                reason="intervention_created",
                actor_id=actor.user_id,
            )
            recipients = tuple(r for r in (tenant_user_id,) if r and r != actor.user_id)
            events.append(
                InterventionCreated(
                    team_id=actor.team_id,
                    actor_id=actor.user_id,
                    recipients=recipients,
                    intervention_id=intervention_id,
                    reference=reference,
                    tenant_user_id=tenant_user_id,
                )
            )
        self.publish(events)
        return ServiceOutput(
            payload={
                "id": intervention_id,
                "reference": reference,
                "status": INITIAL_STATUS,
                "message": success_message("intervention_created"),
            },
            status_code=201,
        )

    def current_status(self, db, actor: Actor, intervention_id: int) -> str | None:
        row = self.repositories(actor).interventions.get_by_id(db, intervention_id)
        return row["status"] if row else None

    def evaluate_actions(self, db, actor: Actor, intervention_id: int) -> ServiceOutput:
        repos = self.repositories(actor)
        _row, snapshot = self.load_snapshot(db, repos, intervention_id)
        self.ensure_visible(snapshot, actor)
        actions = self.authorizer.evaluate_actions(snapshot, actor.role, actor.user_id)
        return ServiceOutput(
            payload={
                "intervention_id": intervention_id,
                "status": snapshot.status,
                "actions": [action.to_dict() for action in actions],
            }
        )

    def get_snapshot(self, db, actor: Actor, intervention_id: int) -> ServiceOutput:
        repos = self.repositories(actor)
        row, snapshot = self.load_snapshot(db, repos, intervention_id)
        self.ensure_visible(snapshot, actor)
        actions = self.authorizer.evaluate_actions(snapshot, actor.role, actor.user_id)
        return ServiceOutput(
            payload={
                "intervention": self.intervention_payload(row),
                "assignments": repos.assignments.list_for_intervention(db, intervention_id),
                "quotes": self.quotes.list_quotes(db, actor, intervention_id).payload["quotes"],
                "time_slots": repos.slots.list_for_intervention(db, intervention_id),
                "closure": repos.closures.list_for_intervention(db, intervention_id),
                "actions": [action.to_dict() for action in actions],
            }
        )

    def status_history(self, db, actor: Actor, intervention_id: int, *, limit: int = 120) -> ServiceOutput:
        repos = self.repositories(actor)
        _row, snapshot = self.load_snapshot(db, repos, intervention_id)
        self.ensure_visible(snapshot, actor)
        events = repos.status_events.list_for_entity(db, entity="intervention", entity_id=intervention_id, limit=limit)
        return ServiceOutput(payload={"intervention_id": intervention_id, "events": events})

    def is_action_permitted(self, status: str, action: str, role: str) -> bool:
        return self.state_machine.can(status, action, role)

    def apply_transition(
        self,
        db,
        actor: Actor,
        intervention_id: int,
        *,
        expected_status: str,
        action: str,
        payload: Mapping[str, Any] | None = None,
    ) -> ServiceOutput:
        data: Mapping[str, Any] = payload or {}
        if action in PLAIN_ACTIONS:
            return self._plain_transition(db, actor, intervention_id, expected_status, action, data)

        if action == "request_quotes":
            return self.quotes.request_quotes(
                db,
                actor,
                intervention_id,
                expected_status=expected_status,
                request_input=QuoteRequestInput.from_payload(data),
            )
        if action == "submit_quote":
            return self.quotes.submit_quote(
                db,
                actor,
                intervention_id,
                expected_status=expected_status,
                submission=QuoteSubmissionInput.from_payload(data),
            )
        if action == "edit_quote":
            return self.quotes.edit_quote(
                db,
                actor,
                _required_id(data, "quote_id"),
                expected_quote_status=str(data.get("expected_quote_status") or ""),
                submission=QuoteSubmissionInput.from_payload(data),
            )
        if action == "cancel_quote":
            return self.quotes.cancel_quote(
                db,
                actor,
                _required_id(data, "quote_id"),
                expected_quote_status=str(data.get("expected_quote_status") or ""),
            )
        if action in ("approve_quote", "reject_quote"):
            review = QuoteReviewInput.from_payload(
                {**data, "decision": "approve" if action == "approve_quote" else "reject"}
            )
            return self.quotes.review_quote(
                db,
                actor,
                _required_id(data, "quote_id"),
                expected_status=expected_status,
                expected_quote_status=str(data.get("expected_quote_status") or ""),
                review_input=review,
            )
        if action == "view_quote":
            return self.quotes.list_quotes(db, actor, intervention_id)
        if action == "propose_slots":
            return self.scheduling.propose_slots(
                db,
                actor,
                intervention_id,
                expected_status=expected_status,
                proposals=slot_proposals_from_payload(data),
            )
        if action == "respond_slot":
            return self.scheduling.respond_to_slot(
                db,
                actor,
                _required_id(data, "time_slot_id"),
                expected_slot_status=_required_text(data, "expected_slot_status"),
                response_input=SlotResponseInput.from_payload(data),
            )
        if action == "confirm_slot":
            return self.scheduling.confirm_slot(
                db,
                actor,
                intervention_id,
                expected_status=expected_status,
                slot_id=_required_id(data, "time_slot_id"),
            )
        if action == "complete_work":
            return self.closure.submit_work_completion(
                db,
                actor,
                intervention_id,
                expected_status=expected_status,
                completion=WorkCompletionInput.from_payload(data),
            )
        if action in ("validate_work", "contest_work"):
            validation_type = "approve" if action == "validate_work" else "contest"
            return self.closure.submit_tenant_validation(
                db,
                actor,
                intervention_id,
                expected_status=expected_status,
                validation=TenantValidationInput.from_payload({**data, "validation_type": validation_type}),
            )
        if action == "finalize":
            return self.closure.submit_manager_finalization(
                db,
                actor,
                intervention_id,
                expected_status=expected_status,
                finalization=ManagerFinalizationInput.from_payload(data),
            )
        raise InvalidTransition(status=expected_status, action=action, role=actor.role)

    def _plain_transition(
        self,
        db,
        actor: Actor,
        intervention_id: int,
        expected_status: str,
        action: str,
        payload: Mapping[str, Any],
    ) -> ServiceOutput:
        comment = _text(payload, "comment", "reason")
        events: List[DomainEvent] = []
        with db.transaction():
            repos = self.repositories(actor)
            _row, snapshot, _action = self.guard(db, repos, actor, intervention_id, action, expected_status)
            rule = self.rule_for(snapshot, action, actor)
            self.require_comment(rule, comment)
            self.require_confirmation(rule, payload)

            fields: Dict[str, Any] = {}
            if action == "reschedule":
                repos.slots.release_selected(db, intervention_id)
                fields["scheduled_date"] = None
            elif action == "cancel":
                repos.quote_requests.cancel_outstanding(db, intervention_id)
            elif action == "remind_tenant":
                repos.status_events.add_event(
                    db,
                    entity="intervention",
                    entity_id=intervention_id,
                    from_status=snapshot.status,
                    to_status=snapshot.status,
                    reason="remind_tenant",
                    actor_id=actor.user_id,
                )
            new_status = self.move(db, repos, actor, snapshot, action, events, reason=comment, **fields)
        self.publish(events)
        return ServiceOutput(
            payload={
                "intervention_id": intervention_id,
                "action": action,
                "previous_status": snapshot.status,
                "status": new_status,
                "message": success_message("transition_applied"),
            }
        )
