from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Tuple


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


def _text(value: Any) -> str:
    return str(value or "").strip()


def _optional_text(value: Any) -> str | None:
    cleaned = _text(value)
    return cleaned or None


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _float(value: Any, default: float = 0.0) -> float | None:
    # Absent means the default; present but unreadable stays None for the validators.
    if value is None or value == "":
        return default
    return _optional_float(value)


def _str_tuple(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(_text(item) for item in value if _text(item))


def _mapping(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


# ---------------------------------------------------------------------------
# Read side: snapshot consumed by the action authorizer.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QuoteView:
    id: int
    provider_id: str
    status: str
    total_amount: float = 0.0
    estimated_duration_hours: float | None = None
    work_details: str = ""
    terms_and_conditions: str | None = None
    estimated_start_date: str | None = None
    submitted_at: str | None = None

    @property
    def reviewable(self) -> bool:
        return self.status in {"pending", "sent"}


@dataclass(frozen=True)
class SlotResponseView:
    user_id: str
    user_role: str
    response: str
    reason: str | None = None


@dataclass(frozen=True)
class SlotView:
    id: int
    status: str
    proposed_by: str
    proposer_role: str
    slot_date: str
    start_time: str
    end_time: str
    responses: Tuple[SlotResponseView, ...] = ()

    @property
    def is_open(self) -> bool:
        return self.status in {"requested", "pending"}

    def response_of(self, user_id: str) -> str | None:
        for item in self.responses:
            if item.user_id == user_id and item.response != "withdraw":
                return item.response
        return None


@dataclass(frozen=True)
class InterventionSnapshot:
    id: int
    reference: str
    status: str
    team_id: str
    tenant_user_id: str | None
    version: int = 1
    correction_cycle: int = 0
    selected_quote_id: int | None = None
    provider_ids: Tuple[str, ...] = ()
    manager_ids: Tuple[str, ...] = ()
    quotes: Tuple[QuoteView, ...] = ()
    slots: Tuple[SlotView, ...] = ()
    outstanding_request_provider_ids: Tuple[str, ...] = ()

    def quote_of(self, provider_id: str) -> QuoteView | None:
        """Latest quote submitted by ``provider_id``."""
        own = [quote for quote in self.quotes if quote.provider_id == provider_id]
        if not own:
            return None
        return max(own, key=lambda quote: quote.id)

    def reviewable_quotes(self) -> List[QuoteView]:
        return [quote for quote in self.quotes if quote.reviewable]

    def received_quotes(self) -> List[QuoteView]:
        return [quote for quote in self.quotes if quote.status != "cancelled"]

    def open_slots(self) -> List[SlotView]:
        return [slot for slot in self.slots if slot.is_open]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Write side: inputs parsed from request payloads.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InterventionCreateInput:
    title: str
    description: str
    tenant_user_id: str | None
    intervention_type: str | None = None
    urgency: str = "normale"
    lot_reference: str | None = None
    building_reference: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "InterventionCreateInput":
        return cls(
            title=_text(payload.get("title")),
            description=_text(payload.get("description")),
            tenant_user_id=_optional_text(payload.get("tenant_user_id")),
            intervention_type=_optional_text(payload.get("intervention_type")),
            urgency=_text(payload.get("urgency")).lower() or "normale",
            lot_reference=_optional_text(payload.get("lot_reference")),
            building_reference=_optional_text(payload.get("building_reference")),
        )


@dataclass(frozen=True)
class QuoteRequestInput:
    provider_ids: Tuple[str, ...]
    deadline: str | None = None
    general_notes: str | None = None
    messages: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "QuoteRequestInput":
        return cls(
            provider_ids=_str_tuple(payload.get("provider_ids")),
            deadline=_optional_text(payload.get("deadline")),
            general_notes=_optional_text(payload.get("general_notes")),
            messages={_text(k): _text(v) for k, v in _mapping(payload.get("messages")).items() if _text(k)},
        )


@dataclass(frozen=True)
class QuoteSubmissionInput:
    labor_cost: float | None
    materials_cost: float | None
    work_details: str
    estimated_duration_hours: float | None = None
    estimated_start_date: str | None = None
    terms_and_conditions: str | None = None
    attachments: Tuple[str, ...] = ()

    @property
    def total_amount(self) -> float:
        return round((self.labor_cost or 0.0) + (self.materials_cost or 0.0), 2)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "QuoteSubmissionInput":
        return cls(
            labor_cost=_float(payload.get("labor_cost")),
            materials_cost=_float(payload.get("materials_cost")),
            work_details=_text(payload.get("work_details")),
            estimated_duration_hours=_optional_float(payload.get("estimated_duration_hours")),
            estimated_start_date=_optional_text(payload.get("estimated_start_date")),
            terms_and_conditions=_optional_text(payload.get("terms_and_conditions")),
            attachments=_str_tuple(payload.get("attachments")),
        )


@dataclass(frozen=True)
class QuoteReviewInput:
    decision: str
    comments: str | None = None
    reason: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "QuoteReviewInput":
        return cls(
            decision=_text(payload.get("decision")).lower(),
            comments=_optional_text(payload.get("comments")),
            reason=_optional_text(payload.get("reason")),
        )


@dataclass(frozen=True)
class SlotProposal:
    slot_date: str
    start_time: str
    end_time: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SlotProposal":
        return cls(
            slot_date=_text(payload.get("date") or payload.get("slot_date")),
            start_time=_text(payload.get("start_time")),
            end_time=_text(payload.get("end_time")),
        )


def slot_proposals_from_payload(payload: Mapping[str, Any]) -> List[SlotProposal]:
    raw = payload.get("slots")
    if not isinstance(raw, list):
        return []
    return [SlotProposal.from_payload(item) for item in raw if isinstance(item, Mapping)]


@dataclass(frozen=True)
class SlotResponseInput:
    response: str
    reason: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SlotResponseInput":
        return cls(
            response=_text(payload.get("response")).lower(),
            reason=_optional_text(payload.get("reason")),
        )


@dataclass(frozen=True)
class WorkCompletionInput:
    work_summary: str
    work_details: str
    actual_duration_hours: float | None
    after_photos: Tuple[str, ...]
    quality_assurance: Dict[str, Any]
    materials_used: str | None = None
    actual_cost: float | None = None
    before_photos: Tuple[str, ...] = ()
    issues_encountered: str | None = None
    recommendations: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "WorkCompletionInput":
        return cls(
            work_summary=_text(payload.get("work_summary")),
            work_details=_text(payload.get("work_details")),
            actual_duration_hours=_optional_float(payload.get("actual_duration_hours")),
            after_photos=_str_tuple(payload.get("after_photos")),
            quality_assurance=_mapping(payload.get("quality_assurance")),
            materials_used=_optional_text(payload.get("materials_used")),
            actual_cost=_optional_float(payload.get("actual_cost")),
            before_photos=_str_tuple(payload.get("before_photos")),
            issues_encountered=_optional_text(payload.get("issues_encountered")),
            recommendations=_optional_text(payload.get("recommendations")),
        )


@dataclass(frozen=True)
class TenantValidationInput:
    validation_type: str
    comments: str | None = None
    work_approval: Dict[str, Any] = field(default_factory=dict)
    satisfaction: Dict[str, Any] = field(default_factory=dict)
    issue_description: str | None = None
    severity: str | None = None
    issue_photos: Tuple[str, ...] = ()
    recommend_provider: bool | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TenantValidationInput":
        recommend = payload.get("recommend_provider")
        return cls(
            validation_type=_text(payload.get("validation_type")).lower(),
            comments=_optional_text(payload.get("comments")),
            work_approval=_mapping(payload.get("work_approval")),
            satisfaction=_mapping(payload.get("satisfaction")),
            issue_description=_optional_text(payload.get("issue_description")),
            severity=_optional_text(payload.get("severity")),
            issue_photos=_str_tuple(payload.get("issue_photos")),
            recommend_provider=recommend if isinstance(recommend, bool) else None,
        )


@dataclass(frozen=True)
class ManagerFinalizationInput:
    admin_comments: str
    quality_control: Dict[str, Any]
    documentation: Dict[str, Any]
    final_cost: float | None
    final_status: str = "completed"
    budget_variance: float | None = None
    cost_justification: str | None = None
    payment_status: str | None = None
    archival: Dict[str, Any] = field(default_factory=dict)
    follow_up: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ManagerFinalizationInput":
        return cls(
            admin_comments=_text(payload.get("admin_comments")),
            quality_control=_mapping(payload.get("quality_control")),
            documentation=_mapping(payload.get("documentation")),
            final_cost=_optional_float(payload.get("final_cost")),
            final_status=_text(payload.get("final_status")).lower() or "completed",
            budget_variance=_optional_float(payload.get("budget_variance")),
            cost_justification=_optional_text(payload.get("cost_justification")),
            payment_status=_optional_text(payload.get("payment_status")),
            archival=_mapping(payload.get("archival")),
            follow_up=_mapping(payload.get("follow_up")),
        )
