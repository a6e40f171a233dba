from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from intervention_engine.core.event_bus import DomainEvent, EventBus, InterventionTransitioned, get_event_bus
from intervention_engine.domain.action_authorizer import Action, ActionAuthorizer
from intervention_engine.domain.contracts import (
    InterventionSnapshot,
    QuoteView,
    SlotResponseView,
    SlotView,
)
from intervention_engine.domain.policy import EnginePolicy
from intervention_engine.domain.status_machine import StatusStateMachine, TransitionRule
from intervention_engine.errors import AuthorizationDenied, NotFound, StaleState, ValidationFailed
from intervention_engine.infrastructure.repositories import (
    AssignmentRepository,
    ClosureRepository,
    InterventionRepository,
    QuoteRepository,
    QuoteRequestRepository,
    StatusEventRepository,
    TimeSlotRepository,
)
from intervention_engine.observability import observe_stale_state, observe_transition
from intervention_engine.policies import GESTIONNAIRE, LOCATAIRE, PRESTATAIRE, Actor
from intervention_engine.ui_strings import error_message


CONFIRMATION_REQUIRED_ACTIONS = frozenset({"cancel"})
_TRUE_TEXT_VALUES = {"1", "true", "yes", "on", "oui"}


def is_explicit_true(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value) == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_TEXT_VALUES
    return False


@dataclass(frozen=True)
class Repositories:
    interventions: InterventionRepository
    assignments: AssignmentRepository
    quote_requests: QuoteRequestRepository
    quotes: QuoteRepository
    slots: TimeSlotRepository
    closures: ClosureRepository
    status_events: StatusEventRepository

    @classmethod
    def for_team(cls, team_id: str) -> "Repositories":
        return cls(
            interventions=InterventionRepository(team_id=team_id),
            assignments=AssignmentRepository(team_id=team_id),
            quote_requests=QuoteRequestRepository(team_id=team_id),
            quotes=QuoteRepository(team_id=team_id),
            slots=TimeSlotRepository(team_id=team_id),
            closures=ClosureRepository(team_id=team_id),
            status_events=StatusEventRepository(team_id=team_id),
        )


def quote_view(row: Mapping[str, Any]) -> QuoteView:
    return QuoteView(
        id=int(row["id"]),
        provider_id=row["provider_id"],
        status=row["status"],
        total_amount=float(row.get("total_amount") or 0),
        estimated_duration_hours=row.get("estimated_duration_hours"),
        work_details=row.get("work_details") or "",
        terms_and_conditions=row.get("terms_and_conditions"),
        estimated_start_date=row.get("estimated_start_date"),
        submitted_at=row.get("submitted_at"),
    )


def slot_view(row: Mapping[str, Any]) -> SlotView:
    return SlotView(
        id=int(row["id"]),
        status=row["status"],
        proposed_by=row["proposed_by"],
        proposer_role=row["proposer_role"],
        slot_date=row["slot_date"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        responses=tuple(
            SlotResponseView(
                user_id=item["user_id"],
                user_role=item["user_role"],
                response=item["response"],
                reason=item.get("reason"),
            )
            for item in row.get("responses") or []
        ),
    )


class WorkflowSupport:
    """Plumbing shared by the workflow services.

    Every mutation follows the same shape: open a transaction, re-read the
    intervention, compare it with the status the caller saw, ask the
    authorizer, write, then publish the collected events once committed.
    """

    def __init__(self, policy: EnginePolicy | None = None, event_bus: EventBus | None = None) -> None:
        self.policy = policy or EnginePolicy()
        self.state_machine = StatusStateMachine(contest_target=self.policy.contest_target_status)
        self.authorizer = ActionAuthorizer(self.state_machine)
        self.event_bus = event_bus or get_event_bus()

    @staticmethod
    def repositories(actor: Actor) -> Repositories:
        return Repositories.for_team(actor.team_id)

    def load_intervention(self, db, repos: Repositories, intervention_id: int) -> dict:
        row = repos.interventions.get_by_id(db, intervention_id)
        if not row:
            raise NotFound(message_key="intervention_not_found", payload={"intervention_id": intervention_id})
        return row

    def snapshot_of(self, db, repos: Repositories, row: Mapping[str, Any]) -> InterventionSnapshot:
        intervention_id = int(row["id"])
        assignments = repos.assignments.list_for_intervention(db, intervention_id)
        return InterventionSnapshot(
            id=intervention_id,
            reference=row["reference"],
            status=row["status"],
            team_id=row["team_id"],
            tenant_user_id=row.get("tenant_user_id"),
            version=int(row.get("version") or 1),
            correction_cycle=int(row.get("correction_cycle") or 0),
            selected_quote_id=row.get("selected_quote_id"),
            provider_ids=tuple(a["user_id"] for a in assignments if a["role"] == PRESTATAIRE),
            manager_ids=tuple(a["user_id"] for a in assignments if a["role"] == GESTIONNAIRE),
            quotes=tuple(quote_view(q) for q in repos.quotes.list_for_intervention(db, intervention_id)),
            slots=tuple(slot_view(s) for s in repos.slots.list_for_intervention(db, intervention_id)),
            outstanding_request_provider_ids=tuple(
                repos.quote_requests.outstanding_provider_ids(db, intervention_id)
            ),
        )

    def load_snapshot(self, db, repos: Repositories, intervention_id: int) -> Tuple[dict, InterventionSnapshot]:
        row = self.load_intervention(db, repos, intervention_id)
        return row, self.snapshot_of(db, repos, row)

    def ensure_visible(self, snapshot: InterventionSnapshot, actor: Actor) -> None:
        if actor.role == GESTIONNAIRE:
            return
        if actor.role == LOCATAIRE and actor.user_id == snapshot.tenant_user_id:
            return
        if actor.role == PRESTATAIRE and actor.user_id in snapshot.provider_ids:
            return
        raise AuthorizationDenied(payload={"intervention_id": snapshot.id})

    def stale(self, *, expected: str | None, actual: str | None, entity: str = "intervention") -> StaleState:
        observe_stale_state(entity)
        return StaleState(expected=expected, actual=actual, entity=entity)

    def guard(
        self,
        db,
        repos: Repositories,
        actor: Actor,
        intervention_id: int,
        action: str,
        expected_status: str | None,
    ) -> Tuple[dict, InterventionSnapshot, Action]:
        """Re-read, check the precondition and authorize. Call inside a transaction."""
        row, snapshot = self.load_snapshot(db, repos, intervention_id)
        if expected_status is not None and snapshot.status != expected_status:
            raise self.stale(expected=expected_status, actual=snapshot.status)
        permitted = self.authorizer.authorize(snapshot, actor.role, actor.user_id, action)
        return row, snapshot, permitted

    def rule_for(self, snapshot: InterventionSnapshot, action: str, actor: Actor) -> TransitionRule:
        return self.state_machine.rule(snapshot.status, action, actor.role)

    @staticmethod
    def require_comment(rule: TransitionRule, comment: str | None, field_name: str = "comment") -> None:
        if rule.requires_comment and not str(comment or "").strip():
            raise ValidationFailed(fields={field_name: error_message("comment_required")})

    @staticmethod
    def require_confirmation(rule: TransitionRule, payload: Mapping[str, Any]) -> None:
        if rule.action in CONFIRMATION_REQUIRED_ACTIONS and not is_explicit_true(payload.get("confirm")):
            raise ValidationFailed(
                code="confirmation_required",
                message_key="confirmation_required",
                fields={"confirm": error_message("confirmation_required")},
            )

    @staticmethod
    def audience(snapshot: InterventionSnapshot, actor: Actor) -> Tuple[str, ...]:
        everyone: List[str] = [*snapshot.manager_ids, *snapshot.provider_ids]
        if snapshot.tenant_user_id:
            everyone.append(snapshot.tenant_user_id)
        return tuple(user for user in dict.fromkeys(everyone) if user and user != actor.user_id)

    def move(
        self,
        db,
        repos: Repositories,
        actor: Actor,
        snapshot: InterventionSnapshot,
        action: str,
        events: List[DomainEvent],
        *,
        reason: str | None = None,
        **fields: Any,
    ) -> str:
        """Apply ``action`` to the status with a compare-and-set update."""
        target = self.state_machine.transition(snapshot.status, action, actor.role, snapshot.status)
        if target == snapshot.status:
            repos.interventions.update_fields(db, snapshot.id, **fields)
        else:
            moved = repos.interventions.compare_and_set_status(
                db,
                snapshot.id,
                expected_status=snapshot.status,
                new_status=target,
                **fields,
            )
            if not moved:
                current = repos.interventions.get_by_id(db, snapshot.id) or {}
                raise self.stale(expected=snapshot.status, actual=current.get("status"))
            repos.status_events.add_event(
                db,
                entity="intervention",
                entity_id=snapshot.id,
                from_status=snapshot.status,
                to_status=target,
                reason=reason or action,
                actor_id=actor.user_id,
            )
            observe_transition(snapshot.status, target, action)
        events.append(
            InterventionTransitioned(
                team_id=actor.team_id,
                actor_id=actor.user_id,
                recipients=self.audience(snapshot, actor),
                intervention_id=snapshot.id,
                action=action,
                from_status=snapshot.status,
                to_status=target,
                reason=reason,
            )
        )
        return target

    def publish(self, events: Iterable[DomainEvent]) -> None:
        self.event_bus.publish_all(list(events))

    @staticmethod
    def intervention_payload(row: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "reference": row["reference"],
            "title": row["title"],
            "description": row.get("description"),
            "intervention_type": row.get("intervention_type"),
            "urgency": row.get("urgency"),
            "status": row["status"],
            "tenant_user_id": row.get("tenant_user_id"),
            "lot_reference": row.get("lot_reference"),
            "building_reference": row.get("building_reference"),
            "scheduled_date": row.get("scheduled_date"),
            "selected_quote_id": row.get("selected_quote_id"),
            "quote_deadline": row.get("quote_deadline"),
            "final_amount": row.get("final_amount"),
            "finalized_at": row.get("finalized_at"),
            "correction_cycle": row.get("correction_cycle"),
            "version": row.get("version"),
            "team_id": row["team_id"],
            "created_at": row.get("created_at"),
            "updated_at": row.get("updated_at"),
        }
