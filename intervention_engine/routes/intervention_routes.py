from __future__ import annotations

from typing import Any, Callable, Dict

from flask import Blueprint, current_app, jsonify, request

from intervention_engine.application.intervention_service import InterventionService
from intervention_engine.application.stale_retry import run_with_stale_retry
from intervention_engine.db import get_db
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
from intervention_engine.errors import ValidationFailed
from intervention_engine.policies import Actor, current_actor


intervention_bp = Blueprint("interventions", __name__, url_prefix="/api")


def _service() -> InterventionService:
    return current_app.extensions["intervention_service"]


def _payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _required(payload: Dict[str, Any], key: str) -> str:
    value = str(payload.get(key) or request.args.get(key) or "").strip()
    if not value:
        raise ValidationFailed(fields={key: "champ obligatoire"})
    return value


def _respond(output: ServiceOutput):
    return jsonify(output.payload), output.status_code


def _with_stale_retry(
    actor: Actor,
    intervention_id: int,
    action: str,
    expected_status: str,
    operation: Callable[[str], ServiceOutput],
) -> ServiceOutput:
    service = _service()
    db = get_db()
    return run_with_stale_retry(
        operation,
        expected_status=expected_status,
        refetch_status=lambda: service.current_status(db, actor, intervention_id),
        still_permitted=lambda status: service.is_action_permitted(status, action, actor.role),
        attempts=service.policy.stale_state_retry_attempts,
    )


@intervention_bp.route("/interventions", methods=["POST"])
def create_intervention():
    actor = current_actor()
    output = _service().create_intervention(get_db(), actor, InterventionCreateInput.from_payload(_payload()))
    return _respond(output)


@intervention_bp.route("/interventions/<int:intervention_id>", methods=["GET"])
def get_intervention(intervention_id: int):
    return _respond(_service().get_snapshot(get_db(), current_actor(), intervention_id))


@intervention_bp.route("/interventions/<int:intervention_id>/actions", methods=["GET"])
def list_actions(intervention_id: int):
    return _respond(_service().evaluate_actions(get_db(), current_actor(), intervention_id))


@intervention_bp.route("/interventions/<int:intervention_id>/history", methods=["GET"])
def history(intervention_id: int):
    limit = request.args.get("limit", type=int) or 120
    return _respond(_service().status_history(get_db(), current_actor(), intervention_id, limit=max(1, min(limit, 500))))


@intervention_bp.route("/interventions/<int:intervention_id>/transitions", methods=["POST"])
def apply_transition(intervention_id: int):
    actor = current_actor()
    payload = _payload()
    action = _required(payload, "action")
    expected_status = _required(payload, "expected_status")
    output = _with_stale_retry(
        actor,
        intervention_id,
        action,
        expected_status,
        lambda status: _service().apply_transition(
            get_db(),
            actor,
            intervention_id,
            expected_status=status,
            action=action,
            payload=payload,
        ),
    )
    return _respond(output)


@intervention_bp.route("/interventions/<int:intervention_id>/quote-requests", methods=["POST"])
def request_quotes(intervention_id: int):
    actor = current_actor()
    payload = _payload()
    expected_status = _required(payload, "expected_status")
    request_input = QuoteRequestInput.from_payload(payload)
    output = _with_stale_retry(
        actor,
        intervention_id,
        "request_quotes",
        expected_status,
        lambda status: _service().quotes.request_quotes(
            get_db(), actor, intervention_id, expected_status=status, request_input=request_input
        ),
    )
    return _respond(output)


@intervention_bp.route("/interventions/<int:intervention_id>/quotes", methods=["GET"])
def list_quotes(intervention_id: int):
    return _respond(_service().quotes.list_quotes(get_db(), current_actor(), intervention_id))


@intervention_bp.route("/interventions/<int:intervention_id>/quotes", methods=["POST"])
def submit_quote(intervention_id: int):
    actor = current_actor()
    payload = _payload()
    expected_status = _required(payload, "expected_status")
    submission = QuoteSubmissionInput.from_payload(payload)
    output = _with_stale_retry(
        actor,
        intervention_id,
        "submit_quote",
        expected_status,
        lambda status: _service().quotes.submit_quote(
            get_db(), actor, intervention_id, expected_status=status, submission=submission
        ),
    )
    return _respond(output)


@intervention_bp.route("/quotes/<int:quote_id>", methods=["PUT"])
def edit_quote(quote_id: int):
    actor = current_actor()
    payload = _payload()
    output = _service().quotes.edit_quote(
        get_db(),
        actor,
        quote_id,
        expected_quote_status=_required(payload, "expected_quote_status"),
        submission=QuoteSubmissionInput.from_payload(payload),
    )
    return _respond(output)


@intervention_bp.route("/quotes/<int:quote_id>", methods=["DELETE"])
def cancel_quote(quote_id: int):
    actor = current_actor()
    payload = _payload()
    output = _service().quotes.cancel_quote(
        get_db(),
        actor,
        quote_id,
        expected_quote_status=_required(payload, "expected_quote_status"),
    )
    return _respond(output)


@intervention_bp.route("/quotes/<int:quote_id>/review", methods=["POST"])
def review_quote(quote_id: int):
    actor = current_actor()
    payload = _payload()
    output = _service().quotes.review_quote(
        get_db(),
        actor,
        quote_id,
        expected_status=_required(payload, "expected_status"),
        expected_quote_status=_required(payload, "expected_quote_status"),
        review_input=QuoteReviewInput.from_payload(payload),
    )
    return _respond(output)


@intervention_bp.route("/interventions/<int:intervention_id>/time-slots", methods=["GET"])
def list_time_slots(intervention_id: int):
    return _respond(_service().scheduling.list_slots(get_db(), current_actor(), intervention_id))


@intervention_bp.route("/interventions/<int:intervention_id>/time-slots", methods=["POST"])
def propose_time_slots(intervention_id: int):
    actor = current_actor()
    payload = _payload()
    expected_status = _required(payload, "expected_status")
    proposals = slot_proposals_from_payload(payload)
    output = _with_stale_retry(
        actor,
        intervention_id,
        "propose_slots",
        expected_status,
        lambda status: _service().scheduling.propose_slots(
            get_db(), actor, intervention_id, expected_status=status, proposals=proposals
        ),
    )
    return _respond(output)


@intervention_bp.route("/time-slots/<int:slot_id>/response", methods=["PUT"])
def respond_to_time_slot(slot_id: int):
    actor = current_actor()
    payload = _payload()
    output = _service().scheduling.respond_to_slot(
        get_db(),
        actor,
        slot_id,
        expected_slot_status=_required(payload, "expected_slot_status"),
        response_input=SlotResponseInput.from_payload(payload),
    )
    return _respond(output)


@intervention_bp.route("/time-slots/<int:slot_id>/response", methods=["DELETE"])
def withdraw_time_slot_response(slot_id: int):
    actor = current_actor()
    output = _service().scheduling.withdraw_response(
        get_db(),
        actor,
        slot_id,
        expected_slot_status=_required(_payload(), "expected_slot_status"),
    )
    return _respond(output)


@intervention_bp.route("/interventions/<int:intervention_id>/time-slots/<int:slot_id>/confirm", methods=["POST"])
def confirm_time_slot(intervention_id: int, slot_id: int):
    actor = current_actor()
    expected_status = _required(_payload(), "expected_status")
    output = _with_stale_retry(
        actor,
        intervention_id,
        "confirm_slot",
        expected_status,
        lambda status: _service().scheduling.confirm_slot(
            get_db(), actor, intervention_id, expected_status=status, slot_id=slot_id
        ),
    )
    return _respond(output)


@intervention_bp.route("/interventions/<int:intervention_id>/work-completion", methods=["POST"])
def submit_work_completion(intervention_id: int):
    actor = current_actor()
    payload = _payload()
    expected_status = _required(payload, "expected_status")
    completion = WorkCompletionInput.from_payload(payload)
    output = _with_stale_retry(
        actor,
        intervention_id,
        "complete_work",
        expected_status,
        lambda status: _service().closure.submit_work_completion(
            get_db(), actor, intervention_id, expected_status=status, completion=completion
        ),
    )
    return _respond(output)


@intervention_bp.route("/interventions/<int:intervention_id>/tenant-validation", methods=["POST"])
def submit_tenant_validation(intervention_id: int):
    actor = current_actor()
    payload = _payload()
    expected_status = _required(payload, "expected_status")
    validation = TenantValidationInput.from_payload(payload)
    action = "contest_work" if validation.validation_type == "contest" else "validate_work"
    output = _with_stale_retry(
        actor,
        intervention_id,
        action,
        expected_status,
        lambda status: _service().closure.submit_tenant_validation(
            get_db(), actor, intervention_id, expected_status=status, validation=validation
        ),
    )
    return _respond(output)


@intervention_bp.route("/interventions/<int:intervention_id>/finalization", methods=["POST"])
def submit_finalization(intervention_id: int):
    actor = current_actor()
    payload = _payload()
    expected_status = _required(payload, "expected_status")
    finalization = ManagerFinalizationInput.from_payload(payload)
    output = _with_stale_retry(
        actor,
        intervention_id,
        "finalize",
        expected_status,
        lambda status: _service().closure.submit_manager_finalization(
            get_db(), actor, intervention_id, expected_status=status, finalization=finalization
        ),
    )
    return _respond(output)
