from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime, timezone
from typing import Any, Dict, List

from intervention_engine.application.workflow_support import WorkflowSupport, quote_view
from intervention_engine.core.event_bus import (
    DomainEvent,
    QuoteReviewed,
    QuotesRequested,
    QuoteSubmitted,
    QuoteWithdrawn,
)
from intervention_engine.db import is_unique_violation
from intervention_engine.domain.checklists import QUOTE_SUBMISSION_SCHEMA, ensure_valid
from intervention_engine.domain.contracts import (
    QuoteRequestInput,
    QuoteReviewInput,
    QuoteSubmissionInput,
    ServiceOutput,
)
from intervention_engine.domain.policy import SIBLING_REJECT
from intervention_engine.domain.quote_ranking import rank_quotes
from intervention_engine.errors import AuthorizationDenied, InvalidTransition, NotFound, ValidationFailed
from intervention_engine.infrastructure.repositories.quote_repository import (
    BLOCKING_QUOTE_STATUSES,
    OPEN_QUOTE_STATUSES,
)
from intervention_engine.policies import GESTIONNAIRE, LOCATAIRE, PRESTATAIRE, Actor
from intervention_engine.ui_strings import auto_message, error_message, ineligible_message, success_message


def parse_deadline(value: str | None) -> date | None:
    if not value:
        return None
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise ValidationFailed(fields={"deadline": "date invalide (AAAA-MM-JJ attendu)"}) from None


def _quote_payload(row: Dict[str, Any], score: int | None = None) -> Dict[str, Any]:
    payload = {
        "id": row["id"],
        "intervention_id": row["intervention_id"],
        "provider_id": row["provider_id"],
        "status": row["status"],
        "labor_cost": row.get("labor_cost"),
        "materials_cost": row.get("materials_cost"),
        "total_amount": row.get("total_amount"),
        "work_details": row.get("work_details"),
        "estimated_duration_hours": row.get("estimated_duration_hours"),
        "estimated_start_date": row.get("estimated_start_date"),
        "terms_and_conditions": row.get("terms_and_conditions"),
        "attachments": row.get("attachments") or [],
        "submitted_at": row.get("submitted_at"),
        "reviewed_at": row.get("reviewed_at"),
        "review_comments": row.get("review_comments"),
        "rejection_reason": row.get("rejection_reason"),
    }
    if score is not None:
        payload["score"] = score
    return payload


class QuoteService(WorkflowSupport):
    def request_quotes(
        self,
        db,
        actor: Actor,
        intervention_id: int,
        *,
        expected_status: str,
        request_input: QuoteRequestInput,
    ) -> ServiceOutput:
        provider_ids = list(dict.fromkeys(request_input.provider_ids))
        if not provider_ids:
            raise ValidationFailed(fields={"provider_ids": "au moins un prestataire requis"})
        deadline = parse_deadline(request_input.deadline)
        if deadline is not None and deadline < datetime.now(timezone.utc).date():
            raise ValidationFailed(fields={"deadline": "la date limite est deja passee"})

        events: List[DomainEvent] = []
        with db.transaction():
            repos = self.repositories(actor)
            _row, snapshot, _action = self.guard(db, repos, actor, intervention_id, "request_quotes", expected_status)

            blocking = repos.quotes.providers_with_status(db, intervention_id, BLOCKING_QUOTE_STATUSES)
            outstanding = set(repos.quote_requests.outstanding_provider_ids(db, intervention_id))
            eligible: List[str] = []
            ineligible: List[Dict[str, str]] = []
            for provider_id in provider_ids:
                if provider_id in blocking:
                    reason = ineligible_message(f"quote_{blocking[provider_id]}")
                elif provider_id in outstanding:
                    reason = ineligible_message("request_outstanding")
                else:
                    eligible.append(provider_id)
                    continue
                ineligible.append({"provider_id": provider_id, "reason": reason})

            if not eligible:
                raise ValidationFailed(
                    code="no_eligible_provider",
                    message_key="no_eligible_provider",
                    fields={"provider_ids": error_message("no_eligible_provider")},
                    payload={"ineligible": ineligible},
                )

            request_ids = []
            for provider_id in eligible:
                request_ids.append(
                    repos.quote_requests.create(
                        db,
                        intervention_id=intervention_id,
                        provider_id=provider_id,
                        deadline=request_input.deadline,
                        general_notes=request_input.general_notes,
                        message=request_input.messages.get(provider_id),
                        requested_by=actor.user_id,
                    )
                )
                repos.assignments.assign(db, intervention_id=intervention_id, user_id=provider_id, role=PRESTATAIRE)
            repos.assignments.assign(db, intervention_id=intervention_id, user_id=actor.user_id, role=GESTIONNAIRE)

            new_status = self.move(
                db,
                repos,
                actor,
                snapshot,
                "request_quotes",
                events,
                quote_deadline=request_input.deadline,
            )
            events.append(
                QuotesRequested(
                    team_id=actor.team_id,
                    actor_id=actor.user_id,
                    recipients=tuple(eligible),
                    intervention_id=intervention_id,
                    provider_ids=tuple(eligible),
                    deadline=request_input.deadline,
                )
            )
        self.publish(events)
        return ServiceOutput(
            payload={
                "intervention_id": intervention_id,
                "status": new_status,
                "request_ids": request_ids,
                "requested": eligible,
                "ineligible": ineligible,
                "message": success_message("quotes_requested"),
            },
            status_code=201,
        )

    def submit_quote(
        self,
        db,
        actor: Actor,
        intervention_id: int,
        *,
        expected_status: str,
        submission: QuoteSubmissionInput,
    ) -> ServiceOutput:
        ensure_valid(QUOTE_SUBMISSION_SCHEMA, {**asdict(submission), "total_amount": submission.total_amount})
        events: List[DomainEvent] = []
        with db.transaction():
            repos = self.repositories(actor)
            _row, snapshot, _action = self.guard(db, repos, actor, intervention_id, "submit_quote", expected_status)
            if not repos.quote_requests.was_solicited(db, intervention_id, actor.user_id):
                raise AuthorizationDenied(message_key="provider_not_solicited", payload={"intervention_id": intervention_id})
            quote_id = repos.quotes.create(
                db,
                intervention_id=intervention_id,
                provider_id=actor.user_id,
                labor_cost=submission.labor_cost,
                materials_cost=submission.materials_cost,
                total_amount=submission.total_amount,
                work_details=submission.work_details,
                estimated_duration_hours=submission.estimated_duration_hours,
                estimated_start_date=submission.estimated_start_date,
                terms_and_conditions=submission.terms_and_conditions,
                attachments=submission.attachments,
                status="pending",
            )
            repos.quote_requests.mark_responded(db, intervention_id=intervention_id, provider_id=actor.user_id)
            repos.status_events.add_event(
                db,
                entity="quote",
                entity_id=quote_id,
                from_status=None,
                to_status="pending",
                reason="quote_submitted",
                actor_id=actor.user_id,
            )
            events.append(
                QuoteSubmitted(
                    team_id=actor.team_id,
                    actor_id=actor.user_id,
                    recipients=snapshot.manager_ids,
                    intervention_id=intervention_id,
                    quote_id=quote_id,
                    provider_id=actor.user_id,
                )
            )
        self.publish(events)
        return ServiceOutput(
            payload={"quote_id": quote_id, "status": "pending", "message": success_message("quote_submitted")},
            status_code=201,
        )

    def _load_own_open_quote(self, db, repos, actor: Actor, quote_id: int, action: str, expected_quote_status: str) -> dict:
        quote = repos.quotes.get_by_id(db, quote_id)
        if not quote:
            raise NotFound(message_key="quote_not_found", payload={"quote_id": quote_id})
        if quote["provider_id"] != actor.user_id:
            raise AuthorizationDenied(message_key="quote_not_owned", payload={"quote_id": quote_id})
        if quote["status"] != expected_quote_status:
            raise self.stale(expected=expected_quote_status, actual=quote["status"], entity="quote")
        if quote["status"] not in OPEN_QUOTE_STATUSES:
            raise InvalidTransition(status=quote["status"], action=action, role=actor.role)
        return quote

    def edit_quote(
        self,
        db,
        actor: Actor,
        quote_id: int,
        *,
        expected_quote_status: str,
        submission: QuoteSubmissionInput,
    ) -> ServiceOutput:
        ensure_valid(QUOTE_SUBMISSION_SCHEMA, {**asdict(submission), "total_amount": submission.total_amount})
        events: List[DomainEvent] = []
        with db.transaction():
            repos = self.repositories(actor)
            quote = self._load_own_open_quote(db, repos, actor, quote_id, "edit_quote", expected_quote_status)
            _row, snapshot, _action = self.guard(db, repos, actor, quote["intervention_id"], "edit_quote", None)
            updated = repos.quotes.update_content(
                db,
                quote_id,
                expected_status=expected_quote_status,
                new_status="sent",
                labor_cost=submission.labor_cost,
                materials_cost=submission.materials_cost,
                total_amount=submission.total_amount,
                work_details=submission.work_details,
                estimated_duration_hours=submission.estimated_duration_hours,
                estimated_start_date=submission.estimated_start_date,
                terms_and_conditions=submission.terms_and_conditions,
                attachments=submission.attachments,
            )
            if not updated:
                raise self.stale(expected=expected_quote_status, actual=None, entity="quote")
            repos.status_events.add_event(
                db,
                entity="quote",
                entity_id=quote_id,
                from_status=expected_quote_status,
                to_status="sent",
                reason="quote_revised",
                actor_id=actor.user_id,
            )
            events.append(
                QuoteSubmitted(
                    team_id=actor.team_id,
                    actor_id=actor.user_id,
                    recipients=snapshot.manager_ids,
                    intervention_id=snapshot.id,
                    quote_id=quote_id,
                    provider_id=actor.user_id,
                    revised=True,
                )
            )
        self.publish(events)
        return ServiceOutput(payload={"quote_id": quote_id, "status": "sent", "message": success_message("quote_updated")})

    def cancel_quote(self, db, actor: Actor, quote_id: int, *, expected_quote_status: str) -> ServiceOutput:
        events: List[DomainEvent] = []
        with db.transaction():
            repos = self.repositories(actor)
            quote = self._load_own_open_quote(db, repos, actor, quote_id, "cancel_quote", expected_quote_status)
            _row, snapshot, _action = self.guard(db, repos, actor, quote["intervention_id"], "cancel_quote", None)
            if not repos.quotes.compare_and_set_status(
                db, quote_id, expected_status=expected_quote_status, new_status="cancelled"
            ):
                raise self.stale(expected=expected_quote_status, actual=None, entity="quote")
            repos.status_events.add_event(
                db,
                entity="quote",
                entity_id=quote_id,
                from_status=expected_quote_status,
                to_status="cancelled",
                reason="quote_cancelled",
                actor_id=actor.user_id,
            )
            events.append(
                QuoteWithdrawn(
                    team_id=actor.team_id,
                    actor_id=actor.user_id,
                    recipients=snapshot.manager_ids,
                    intervention_id=snapshot.id,
                    quote_id=quote_id,
                    provider_id=actor.user_id,
                )
            )
        self.publish(events)
        return ServiceOutput(
            payload={"quote_id": quote_id, "status": "cancelled", "message": success_message("quote_cancelled")}
        )

    def review_quote(
        self,
        db,
        actor: Actor,
        quote_id: int,
        *,
        expected_status: str,
        expected_quote_status: str,
        review_input: QuoteReviewInput,
    ) -> ServiceOutput:
        if review_input.decision not in ("approve", "reject"):
            raise ValidationFailed(fields={"decision": "valeur attendue parmi: approve, reject"})
        action = "approve_quote" if review_input.decision == "approve" else "reject_quote"
        reason = review_input.reason or review_input.comments

        events: List[DomainEvent] = []
        with db.transaction():
            repos = self.repositories(actor)
            quote = repos.quotes.get_by_id(db, quote_id)
            if not quote:
                raise NotFound(message_key="quote_not_found", payload={"quote_id": quote_id})
            _row, snapshot, _action = self.guard(db, repos, actor, quote["intervention_id"], action, expected_status)
            if quote["status"] != expected_quote_status:
                raise self.stale(expected=expected_quote_status, actual=quote["status"], entity="quote")
            if quote["status"] not in OPEN_QUOTE_STATUSES:
                raise InvalidTransition(status=quote["status"], action=action, role=actor.role)

            if action == "reject_quote":
                self.require_comment(self.rule_for(snapshot, action, actor), reason, field_name="reason")
                if not repos.quotes.compare_and_set_status(
                    db,
                    quote_id,
                    expected_status=expected_quote_status,
                    new_status="rejected",
                    reviewed_by=actor.user_id,
                    review_comments=review_input.comments,
                    rejection_reason=reason,
                ):
                    raise self.stale(expected=expected_quote_status, actual=None, entity="quote")
                repos.status_events.add_event(
                    db,
                    entity="quote",
                    entity_id=quote_id,
                    from_status=expected_quote_status,
                    to_status="rejected",
                    reason=reason,
                    actor_id=actor.user_id,
                )
                new_status = self.move(db, repos, actor, snapshot, action, events, reason=reason)
                events.append(self._reviewed(actor, quote, "rejected", reason))
                siblings: List[Dict[str, Any]] = []
            else:
                if repos.quotes.accepted_for_intervention(db, snapshot.id):
                    raise self.stale(expected=expected_quote_status, actual="accepted", entity="quote")
                try:
                    accepted = repos.quotes.compare_and_set_status(
                        db,
                        quote_id,
                        expected_status=expected_quote_status,
                        new_status="accepted",
                        reviewed_by=actor.user_id,
                        review_comments=review_input.comments,
                    )
                except Exception as exc:
                    if is_unique_violation(exc):
                        raise self.stale(expected=expected_quote_status, actual="accepted", entity="quote") from exc
                    raise
                if not accepted:
                    raise self.stale(expected=expected_quote_status, actual=None, entity="quote")
                repos.status_events.add_event(
                    db,
                    entity="quote",
                    entity_id=quote_id,
                    from_status=expected_quote_status,
                    to_status="accepted",
                    reason=review_input.comments or "quote_approved",
                    actor_id=actor.user_id,
                )
                siblings = []
                if self.policy.quote_sibling_policy == SIBLING_REJECT:
                    auto_reason = auto_message("sibling_rejected")
                    siblings = repos.quotes.reject_open_siblings(
                        db,
                        intervention_id=snapshot.id,
                        except_quote_id=quote_id,
                        reason=auto_reason,
                        reviewed_by=actor.user_id,
                    )
                    for sibling in siblings:
                        events.append(self._reviewed(actor, sibling, "rejected", auto_reason, snapshot.id))
                repos.quote_requests.cancel_outstanding(db, snapshot.id)
                new_status = self.move(
                    db,
                    repos,
                    actor,
                    snapshot,
                    action,
                    events,
                    reason=review_input.comments,
                    selected_quote_id=quote_id,
                )
                events.append(self._reviewed(actor, quote, "approved", review_input.comments))
        self.publish(events)
        return ServiceOutput(
            payload={
                "quote_id": quote_id,
                "decision": review_input.decision,
                "intervention_status": new_status,
                "auto_rejected_quote_ids": [int(item["id"]) for item in siblings],
                "message": success_message("quote_reviewed"),
            }
        )

    @staticmethod
    def _reviewed(
        actor: Actor,
        quote: Dict[str, Any],
        decision: str,
        reason: str | None,
        intervention_id: int | None = None,
    ) -> QuoteReviewed:
        return QuoteReviewed(
            team_id=actor.team_id,
            actor_id=actor.user_id,
            recipients=(quote["provider_id"],),
            intervention_id=int(intervention_id or quote["intervention_id"]),
            quote_id=int(quote["id"]),
            provider_id=quote["provider_id"],
            decision=decision,
            reason=reason,
        )

    def list_quotes(self, db, actor: Actor, intervention_id: int) -> ServiceOutput:
        repos = self.repositories(actor)
        _row, snapshot = self.load_snapshot(db, repos, intervention_id)
        self.ensure_visible(snapshot, actor)
        rows = {int(row["id"]): row for row in repos.quotes.list_for_intervention(db, intervention_id)}
        if actor.role == PRESTATAIRE:
            rows = {key: row for key, row in rows.items() if row["provider_id"] == actor.user_id}
        elif actor.role == LOCATAIRE:
            rows = {key: row for key, row in rows.items() if row["status"] == "accepted"}
        ranked = rank_quotes([quote_view(row) for row in rows.values() if row["status"] != "cancelled"])
        ordered = [_quote_payload(rows[view.id], score) for view, score in ranked]
        ordered.extend(_quote_payload(row) for row in rows.values() if row["status"] == "cancelled")
        return ServiceOutput(payload={"intervention_id": intervention_id, "quotes": ordered})
