from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List

from intervention_engine.application.workflow_support import Repositories, WorkflowSupport
from intervention_engine.core.event_bus import ClosureStageRecorded, DomainEvent
from intervention_engine.domain.checklists import (
    ARCHIVAL_SCHEMA,
    TENANT_APPROVAL_SCHEMA,
    TENANT_CONTEST_SCHEMA,
    TENANT_VALIDATION_TYPE_SCHEMA,
    WORK_COMPLETION_SCHEMA,
    ensure_valid,
    manager_finalization_schema,
    validate,
)
from intervention_engine.domain.contracts import (
    InterventionSnapshot,
    ManagerFinalizationInput,
    ServiceOutput,
    TenantValidationInput,
    WorkCompletionInput,
)
from intervention_engine.errors import ValidationFailed
from intervention_engine.infrastructure.repositories.base import utc_now_iso
from intervention_engine.policies import Actor
from intervention_engine.ui_strings import success_message


WORK_COMPLETION = "work_completion"
TENANT_VALIDATION = "tenant_validation"
MANAGER_FINALIZATION = "manager_finalization"


def budget_variance_percent(final_cost: float | None, reference_total: float | None) -> float | None:
    """Signed deviation of the final cost from the accepted quote, in percent."""
    if final_cost is None or not reference_total:
        return None
    return round((float(final_cost) - float(reference_total)) / float(reference_total) * 100, 2)


class ClosureService(WorkflowSupport):
    def _record(
        self,
        db,
        repos: Repositories,
        actor: Actor,
        snapshot: InterventionSnapshot,
        *,
        stage: str,
        payload: Dict[str, Any],
        outcome: str,
        events: List[DomainEvent],
    ) -> int:
        artifact_id = repos.closures.record(
            db,
            intervention_id=snapshot.id,
            stage=stage,
            cycle=snapshot.correction_cycle,
            payload=payload,
            submitted_by=actor.user_id,
        )
        events.append(
            ClosureStageRecorded(
                team_id=actor.team_id,
                actor_id=actor.user_id,
                recipients=self.audience(snapshot, actor),
                intervention_id=snapshot.id,
                stage=stage,
                cycle=snapshot.correction_cycle,
                outcome=outcome,
            )
        )
        return artifact_id

    def submit_work_completion(
        self,
        db,
        actor: Actor,
        intervention_id: int,
        *,
        expected_status: str,
        completion: WorkCompletionInput,
    ) -> ServiceOutput:
        report = asdict(completion)
        ensure_valid(WORK_COMPLETION_SCHEMA, report)
        events: List[DomainEvent] = []
        with db.transaction():
            repos = self.repositories(actor)
            _row, snapshot, _action = self.guard(db, repos, actor, intervention_id, "complete_work", expected_status)
            artifact_id = self._record(
                db, repos, actor, snapshot, stage=WORK_COMPLETION, payload=report, outcome="completed", events=events
            )
            new_status = self.move(db, repos, actor, snapshot, "complete_work", events, reason=completion.work_summary)
        self.publish(events)
        return ServiceOutput(
            payload={
                "intervention_id": intervention_id,
                "status": new_status,
                "artifact_id": artifact_id,
                "message": success_message("work_completion_saved"),
            }
        )

    def submit_tenant_validation(
        self,
        db,
        actor: Actor,
        intervention_id: int,
        *,
        expected_status: str,
        validation: TenantValidationInput,
    ) -> ServiceOutput:
        report = asdict(validation)
        ensure_valid(TENANT_VALIDATION_TYPE_SCHEMA, report)
        contest = validation.validation_type == "contest"
        ensure_valid(TENANT_CONTEST_SCHEMA if contest else TENANT_APPROVAL_SCHEMA, report)
        action = "contest_work" if contest else "validate_work"

        events: List[DomainEvent] = []
        with db.transaction():
            repos = self.repositories(actor)
            _row, snapshot, _action = self.guard(db, repos, actor, intervention_id, action, expected_status)
            artifact_id = self._record(
                db,
                repos,
                actor,
                snapshot,
                stage=TENANT_VALIDATION,
                payload=report,
                outcome=validation.validation_type,
                events=events,
            )
            fields: Dict[str, Any] = {}
            if contest:
                fields["correction_cycle"] = snapshot.correction_cycle + 1
            new_status = self.move(
                db,
                repos,
                actor,
                snapshot,
                action,
                events,
                reason=validation.issue_description if contest else validation.comments,
                **fields,
            )
        self.publish(events)
        return ServiceOutput(
            payload={
                "intervention_id": intervention_id,
                "status": new_status,
                "validation_type": validation.validation_type,
                "artifact_id": artifact_id,
                "correction_cycle": fields.get("correction_cycle", snapshot.correction_cycle),
                "message": success_message("tenant_validation_saved"),
            }
        )

    def _reference_total(self, db, repos: Repositories, snapshot: InterventionSnapshot) -> float | None:
        quote = None
        if snapshot.selected_quote_id:
            quote = repos.quotes.get_by_id(db, int(snapshot.selected_quote_id))
        if quote is None:
            quote = repos.quotes.accepted_for_intervention(db, snapshot.id)
        return float(quote["total_amount"]) if quote else None

    def _archival(self, finalization: ManagerFinalizationInput) -> Dict[str, Any]:
        raw = finalization.archival
        keywords = raw.get("keywords") or []
        if isinstance(keywords, str):
            keywords = [part.strip() for part in keywords.split(",")]
        return {
            "category": str(raw.get("category") or "").strip() or None,
            "keywords": [str(word).strip() for word in keywords if str(word).strip()],
            "retention_period": int(float(raw.get("retention_period") or self.policy.archive_retention_years)),
            "access_level": str(raw.get("access_level") or "restricted").strip().lower(),
        }

    def submit_manager_finalization(
        self,
        db,
        actor: Actor,
        intervention_id: int,
        *,
        expected_status: str,
        finalization: ManagerFinalizationInput,
    ) -> ServiceOutput:
        archival_errors = validate(ARCHIVAL_SCHEMA, finalization.archival, prefix="archival.")
        events: List[DomainEvent] = []
        with db.transaction():
            repos = self.repositories(actor)
            _row, snapshot, _action = self.guard(db, repos, actor, intervention_id, "finalize", expected_status)

            reference_total = self._reference_total(db, repos, snapshot)
            variance = finalization.budget_variance
            if variance is None:
                variance = budget_variance_percent(finalization.final_cost, reference_total)
            report = asdict(finalization)
            report["budget_variance"] = variance
            errors = validate(manager_finalization_schema(self.policy.budget_variance_threshold_percent), report)
            errors.update(archival_errors)
            if errors:
                raise ValidationFailed(fields=errors)

            report["archival"] = self._archival(finalization)
            report["reference_total"] = reference_total
            finalized_at = utc_now_iso()
            artifact_id = self._record(
                db,
                repos,
                actor,
                snapshot,
                stage=MANAGER_FINALIZATION,
                payload=report,
                outcome=finalization.final_status,
                events=events,
            )
            new_status = self.move(
                db,
                repos,
                actor,
                snapshot,
                "finalize",
                events,
                reason=finalization.admin_comments,
                final_amount=finalization.final_cost,
                finalized_at=finalized_at,
            )
        self.publish(events)
        return ServiceOutput(
            payload={
                "intervention_id": intervention_id,
                "status": new_status,
                "artifact_id": artifact_id,
                "final_amount": finalization.final_cost,
                "budget_variance": variance,
                "finalized_at": finalized_at,
                "archival": report["archival"],
                "message": success_message("finalization_saved"),
            }
        )
