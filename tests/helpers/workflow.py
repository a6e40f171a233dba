from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from intervention_engine.application.intervention_service import InterventionService
from intervention_engine.core.event_bus import DomainEvent, EventBus
from intervention_engine.db import connect_database, create_schema
from intervention_engine.domain.contracts import (
    InterventionCreateInput,
    QuoteRequestInput,
    QuoteReviewInput,
    QuoteSubmissionInput,
    SlotProposal,
    WorkCompletionInput,
)
from intervention_engine.domain.policy import EnginePolicy
from intervention_engine.policies import GESTIONNAIRE, LOCATAIRE, PRESTATAIRE, Actor
from tests.helpers.temp_db import TempDbSandbox


TEAM_ID = "team-tests"

MANAGER = Actor(user_id="g-1", role=GESTIONNAIRE, team_id=TEAM_ID)
TENANT = Actor(user_id="l-1", role=LOCATAIRE, team_id=TEAM_ID)
PROVIDER_A = Actor(user_id="p-1", role=PRESTATAIRE, team_id=TEAM_ID)
PROVIDER_B = Actor(user_id="p-2", role=PRESTATAIRE, team_id=TEAM_ID)
OUTSIDER = Actor(user_id="p-9", role=PRESTATAIRE, team_id=TEAM_ID)


def future_day(days: int = 3) -> str:
    return (datetime.now(timezone.utc).date() + timedelta(days=days)).isoformat()


def work_completion_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "work_summary": "Remplacement du siphon",
        "work_details": "Siphon remplace, joints refaits, test d'etancheite OK.",
        "actual_duration_hours": 2.5,
        "after_photos": ["after-1.jpg"],
        "quality_assurance": {
            "work_completed": True,
            "area_clean": True,
            "client_informed": True,
            "warranty_given": True,
        },
    }
    payload.update(overrides)
    return payload


def tenant_approval_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "validation_type": "approve",
        "comments": "Travail propre, merci.",
        "work_approval": {
            "work_completed": True,
            "work_quality": True,
            "area_clean": True,
            "instructions_followed": True,
        },
        "satisfaction": {"punctuality": 5, "quality": 4},
    }
    payload.update(overrides)
    return payload


def tenant_contest_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "validation_type": "contest",
        "issue_description": "La fuite est revenue le lendemain.",
        "severity": "major",
    }
    payload.update(overrides)
    return payload


def finalization_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "admin_comments": "Dossier complet.",
        "final_cost": 1000,
        "final_status": "completed",
        "quality_control": {
            "procedures_followed": True,
            "documentation_complete": True,
            "client_satisfied": True,
            "costs_verified": True,
            "warranty_documented": True,
        },
        "documentation": {
            "completion_certificate": True,
            "warranty_documents": True,
            "invoice_generated": True,
            "client_sign_off": True,
        },
    }
    payload.update(overrides)
    return payload


class WorkflowHarness:
    """Service-level fixture: temporary sqlite schema plus helpers to walk the workflow."""

    def __init__(self, **policy_overrides: Any) -> None:
        self.sandbox = TempDbSandbox(prefix="intervention_workflow")
        self.db = connect_database(self.sandbox.db_path)
        create_schema(self.db)
        self.bus = EventBus()
        self.events: List[DomainEvent] = []
        self.bus.subscribe_all(self.events.append)
        self.service = InterventionService(policy=EnginePolicy(**policy_overrides), event_bus=self.bus)

    def close(self) -> None:
        self.db.close()
        self.sandbox.cleanup()

    def status(self, intervention_id: int) -> str | None:
        return self.service.current_status(self.db, MANAGER, intervention_id)

    def create(self, **overrides: Any) -> int:
        create_input = InterventionCreateInput(
            title=overrides.pop("title", "Fuite sous evier"),
            description=overrides.pop("description", "L'eau coule sous l'evier de la cuisine."),
            tenant_user_id=overrides.pop("tenant_user_id", TENANT.user_id),
            **overrides,
        )
        return self.service.create_intervention(self.db, MANAGER, create_input).payload["id"]

    def approved(self) -> int:
        intervention_id = self.create()
        self.service.apply_transition(self.db, MANAGER, intervention_id, expected_status="demande", action="approve")
        return intervention_id

    def request_quotes(self, intervention_id: int, *providers: Actor, expected_status: str = "approuvee"):
        return self.service.quotes.request_quotes(
            self.db,
            MANAGER,
            intervention_id,
            expected_status=expected_status,
            request_input=QuoteRequestInput(
                provider_ids=tuple(provider.user_id for provider in providers),
                deadline=future_day(10),
            ),
        )

    def submit_quote(
        self,
        intervention_id: int,
        provider: Actor,
        *,
        labor: float = 600,
        materials: float = 400,
        expected_status: str = "demande_de_devis",
        **extra: Any,
    ) -> int:
        submission = QuoteSubmissionInput(
            labor_cost=labor,
            materials_cost=materials,
            work_details=extra.pop("work_details", "Remplacement complet du siphon et des joints."),
            **extra,
        )
        return self.service.quotes.submit_quote(
            self.db, provider, intervention_id, expected_status=expected_status, submission=submission
        ).payload["quote_id"]

    def approve_quote(self, quote_id: int, *, expected_quote_status: str = "pending"):
        return self.service.quotes.review_quote(
            self.db,
            MANAGER,
            quote_id,
            expected_status="demande_de_devis",
            expected_quote_status=expected_quote_status,
            review_input=QuoteReviewInput(decision="approve", comments="Meilleur rapport qualite prix"),
        )

    def in_planning(self) -> Dict[str, int]:
        intervention_id = self.approved()
        self.request_quotes(intervention_id, PROVIDER_A, PROVIDER_B)
        quote_a = self.submit_quote(intervention_id, PROVIDER_A)
        quote_b = self.submit_quote(intervention_id, PROVIDER_B, labor=900, materials=400)
        self.approve_quote(quote_a)
        return {"intervention_id": intervention_id, "quote_a": quote_a, "quote_b": quote_b}

    def propose(self, intervention_id: int, actor: Actor, *, days: int = 3, start: str = "09:00", end: str = "11:00"):
        return self.service.scheduling.propose_slots(
            self.db,
            actor,
            intervention_id,
            expected_status="planification",
            proposals=[SlotProposal(slot_date=future_day(days), start_time=start, end_time=end)],
        )

    def scheduled(self) -> Dict[str, int]:
        ids = self.in_planning()
        slot_id = self.propose(ids["intervention_id"], PROVIDER_A).payload["slot_ids"][0]
        self.service.scheduling.confirm_slot(
            self.db, TENANT, ids["intervention_id"], expected_status="planification", slot_id=slot_id
        )
        return {**ids, "slot_id": slot_id}

    def completed_by_provider(self) -> Dict[str, int]:
        ids = self.scheduled()
        self.service.closure.submit_work_completion(
            self.db,
            PROVIDER_A,
            ids["intervention_id"],
            expected_status="planifiee",
            completion=WorkCompletionInput.from_payload(work_completion_payload()),
        )
        return ids
