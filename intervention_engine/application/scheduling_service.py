from __future__ import annotations

from datetime import date, datetime, time, tzinfo
from typing import Dict, List, Sequence

from intervention_engine.application.workflow_support import WorkflowSupport
from intervention_engine.core.event_bus import DomainEvent, SlotConfirmed, SlotResponded, SlotsProposed
from intervention_engine.domain.contracts import ServiceOutput, SlotProposal, SlotResponseInput
from intervention_engine.errors import InvalidTransition, NotFound, ValidationFailed
from intervention_engine.infrastructure.repositories.time_slot_repository import OPEN_SLOT_STATUSES
from intervention_engine.policies import GESTIONNAIRE, Actor
from intervention_engine.ui_strings import error_message, success_message


SLOT_RESPONSES = ("accept", "reject", "withdraw")


def _parse_slot(proposal: SlotProposal, zone: tzinfo) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    try:
        slot_day = date.fromisoformat(proposal.slot_date)
    except ValueError:
        errors["date"] = "date invalide (AAAA-MM-JJ attendu)"
        slot_day = None
    try:
        start = time.fromisoformat(proposal.start_time)
    except ValueError:
        errors["start_time"] = "heure invalide (HH:MM attendu)"
        start = None
    try:
        end = time.fromisoformat(proposal.end_time)
    except ValueError:
        errors["end_time"] = "heure invalide (HH:MM attendu)"
        end = None
    if start is not None and end is not None and start >= end:
        errors["end_time"] = "l'heure de fin doit suivre l'heure de debut"
    if slot_day is not None and start is not None:
        begins_at = datetime.combine(slot_day, start, tzinfo=zone)
        if begins_at < datetime.now(zone):
            errors["date"] = "le creneau est deja passe"
    return errors


class SchedulingService(WorkflowSupport):
    def propose_slots(
        self,
        db,
        actor: Actor,
        intervention_id: int,
        *,
        expected_status: str,
        proposals: Sequence[SlotProposal],
    ) -> ServiceOutput:
        if not proposals:
            raise ValidationFailed(fields={"slots": "au moins un creneau requis"})
        errors: Dict[str, str] = {}
        for index, proposal in enumerate(proposals):
            for name, reason in _parse_slot(proposal, self.policy.slot_timezone).items():
                errors[f"slots[{index}].{name}"] = reason
        if errors:
            raise ValidationFailed(fields=errors)

        slot_status = "requested" if actor.role == GESTIONNAIRE else "pending"
        events: List[DomainEvent] = []
        created: List[int] = []
        skipped = 0
        with db.transaction():
            repos = self.repositories(actor)
            _row, snapshot, _action = self.guard(db, repos, actor, intervention_id, "propose_slots", expected_status)
            for proposal in proposals:
                if repos.slots.has_open_duplicate(
                    db,
                    intervention_id=intervention_id,
                    slot_date=proposal.slot_date,
                    start_time=proposal.start_time,
                    end_time=proposal.end_time,
                ):
                    skipped += 1
                    continue
                created.append(
                    repos.slots.create(
                        db,
                        intervention_id=intervention_id,
                        slot_date=proposal.slot_date,
                        start_time=proposal.start_time,
                        end_time=proposal.end_time,
                        status=slot_status,
                        proposed_by=actor.user_id,
                        proposer_role=actor.role,
                    )
                )
            if created:
                events.append(
                    SlotsProposed(
                        team_id=actor.team_id,
                        actor_id=actor.user_id,
                        recipients=self.audience(snapshot, actor),
                        intervention_id=intervention_id,
                        slot_ids=tuple(created),
                        proposer_role=actor.role,
                    )
                )
        self.publish(events)
        return ServiceOutput(
            payload={
                "intervention_id": intervention_id,
                "slot_ids": created,
                "slot_status": slot_status,
                "skipped_duplicates": skipped,
                "message": success_message("slots_proposed"),
            },
            status_code=201,
        )

    def _load_slot(self, db, repos, slot_id: int) -> dict:
        slot = repos.slots.get_by_id(db, slot_id)
        if not slot:
            raise NotFound(message_key="time_slot_not_found", payload={"time_slot_id": slot_id})
        return slot

    def respond_to_slot(
        self,
        db,
        actor: Actor,
        slot_id: int,
        *,
        expected_slot_status: str,
        response_input: SlotResponseInput,
    ) -> ServiceOutput:
        response = response_input.response
        if response not in SLOT_RESPONSES:
            raise ValidationFailed(fields={"response": "valeur attendue parmi: " + ", ".join(SLOT_RESPONSES)})
        reason = (response_input.reason or "").strip() or None
        min_length = self.policy.slot_reject_reason_min_length
        if response == "reject" and len(reason or "") < min_length:
            raise ValidationFailed(fields={"reason": f"au moins {min_length} caracteres requis"})
        if response != "reject":
            reason = None

        events: List[DomainEvent] = []
        with db.transaction():
            repos = self.repositories(actor)
            slot = self._load_slot(db, repos, slot_id)
            _row, snapshot, _action = self.guard(db, repos, actor, slot["intervention_id"], "respond_slot", None)
            if slot["status"] != expected_slot_status:
                raise self.stale(expected=expected_slot_status, actual=slot["status"], entity="time_slot")
            if slot["status"] not in OPEN_SLOT_STATUSES:
                raise InvalidTransition(status=slot["status"], action="respond_slot", role=actor.role)
            if slot["proposed_by"] == actor.user_id:
                raise ValidationFailed(fields={"time_slot_id": error_message("own_slot")})
            repos.slots.upsert_response(
                db,
                slot_id=slot_id,
                user_id=actor.user_id,
                user_role=actor.role,
                response=response,
                reason=reason,
            )
            events.append(
                SlotResponded(
                    team_id=actor.team_id,
                    actor_id=actor.user_id,
                    recipients=(slot["proposed_by"],),
                    intervention_id=snapshot.id,
                    slot_id=slot_id,
                    response=response,
                )
            )
        self.publish(events)
        message_key = "slot_response_withdrawn" if response == "withdraw" else "slot_response_saved"
        return ServiceOutput(
            payload={
                "time_slot_id": slot_id,
                "response": response,
                "reason": reason,
                "message": success_message(message_key),
            }
        )

    def withdraw_response(self, db, actor: Actor, slot_id: int, *, expected_slot_status: str) -> ServiceOutput:
        return self.respond_to_slot(
            db,
            actor,
            slot_id,
            expected_slot_status=expected_slot_status,
            response_input=SlotResponseInput(response="withdraw"),
        )

    def confirm_slot(
        self,
        db,
        actor: Actor,
        intervention_id: int,
        *,
        expected_status: str,
        slot_id: int,
    ) -> ServiceOutput:
        events: List[DomainEvent] = []
        with db.transaction():
            repos = self.repositories(actor)
            _row, snapshot, _action = self.guard(db, repos, actor, intervention_id, "confirm_slot", expected_status)
            slot = self._load_slot(db, repos, slot_id)
            if int(slot["intervention_id"]) != int(intervention_id):
                raise NotFound(message_key="time_slot_not_found", payload={"time_slot_id": slot_id})
            if slot["status"] not in OPEN_SLOT_STATUSES:
                raise InvalidTransition(status=slot["status"], action="confirm_slot", role=actor.role)
            own_response = repos.slots.get_response(db, slot_id=slot_id, user_id=actor.user_id)
            if own_response and own_response["response"] == "reject":
                raise ValidationFailed(fields={"time_slot_id": error_message("slot_rejected_by_confirmer")})

            if not repos.slots.compare_and_set_status(
                db, slot_id, expected_status=slot["status"], new_status="selected"
            ):
                raise self.stale(expected=slot["status"], actual=None, entity="time_slot")
            superseded = repos.slots.supersede_open_siblings(
                db, intervention_id=intervention_id, except_slot_id=slot_id
            )
            new_status = self.move(
                db,
                repos,
                actor,
                snapshot,
                "confirm_slot",
                events,
                scheduled_date=f"{slot['slot_date']}T{slot['start_time']}",
            )
            events.append(
                SlotConfirmed(
                    team_id=actor.team_id,
                    actor_id=actor.user_id,
                    recipients=self.audience(snapshot, actor),
                    intervention_id=intervention_id,
                    slot_id=slot_id,
                    slot_date=slot["slot_date"],
                )
            )
        self.publish(events)
        return ServiceOutput(
            payload={
                "intervention_id": intervention_id,
                "status": new_status,
                "time_slot_id": slot_id,
                "superseded": superseded,
                "scheduled_date": f"{slot['slot_date']}T{slot['start_time']}",
                "message": success_message("slot_confirmed"),
            }
        )

    def list_slots(self, db, actor: Actor, intervention_id: int) -> ServiceOutput:
        repos = self.repositories(actor)
        _row, snapshot = self.load_snapshot(db, repos, intervention_id)
        self.ensure_visible(snapshot, actor)
        slots = repos.slots.list_for_intervention(db, intervention_id)
        return ServiceOutput(payload={"intervention_id": intervention_id, "time_slots": slots})
