from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Tuple

from intervention_engine.errors import ValidationFailed


QUALITY_ASSURANCE_ITEMS = ("work_completed", "area_clean", "client_informed", "warranty_given")
TENANT_APPROVAL_ITEMS = ("work_completed", "work_quality", "area_clean", "instructions_followed")
QUALITY_CONTROL_ITEMS = (
    "procedures_followed",
    "documentation_complete",
    "client_satisfied",
    "costs_verified",
    "warranty_documented",
)
DOCUMENTATION_ITEMS = ("completion_certificate", "warranty_documents", "invoice_generated", "client_sign_off")

VALIDATION_TYPES = ("approve", "contest")
CONTEST_SEVERITIES = ("minor", "major", "critical")
FINAL_STATUSES = ("completed", "archived_with_issues")
ACCESS_LEVELS = ("public", "restricted", "confidential")
RATING_RANGE = (1, 5)


@dataclass(frozen=True)
class FieldRule:
    name: str
    kind: str
    required: bool = True
    items: Tuple[str, ...] = ()
    choices: Tuple[str, ...] = ()
    min_length: int = 1
    when: Callable[[Mapping[str, Any]], bool] | None = None


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return not value
    return False


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _check_text(rule: FieldRule, value: Any) -> str | None:
    text = str(value or "").strip()
    if len(text) < rule.min_length:
        if rule.min_length > 1:
            return f"au moins {rule.min_length} caracteres requis"
        return "champ obligatoire"
    return None


def _check_positive(rule: FieldRule, value: Any) -> str | None:
    number = _as_number(value)
    if number is None or number <= 0:
        return "doit etre superieur a zero"
    return None


def _check_non_negative(rule: FieldRule, value: Any) -> str | None:
    number = _as_number(value)
    if number is None or number < 0:
        return "doit etre positif ou nul"
    return None


def _check_items(rule: FieldRule, value: Any) -> str | None:
    if not isinstance(value, (list, tuple)) or not [item for item in value if str(item or "").strip()]:
        return "au moins un element requis"
    return None


def _check_checklist(rule: FieldRule, value: Any) -> str | None:
    checks = value if isinstance(value, Mapping) else {}
    missing = [item for item in rule.items if checks.get(item) is not True]
    if missing:
        return "elements non coches: " + ", ".join(missing)
    return None


def _check_words(rule: FieldRule, value: Any) -> str | None:
    if isinstance(value, str):
        return None
    if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
        return "liste de mots attendue"
    return None


def _check_choice(rule: FieldRule, value: Any) -> str | None:
    if str(value or "").strip().lower() not in rule.choices:
        return "valeur attendue parmi: " + ", ".join(rule.choices)
    return None


def _check_ratings(rule: FieldRule, value: Any) -> str | None:
    if not isinstance(value, Mapping):
        return "notes invalides"
    low, high = RATING_RANGE
    invalid = []
    for key, rating in value.items():
        number = _as_number(rating)
        if number is None or number != int(number) or not low <= number <= high:
            invalid.append(str(key))
    if invalid:
        return f"notes entre {low} et {high} attendues: " + ", ".join(sorted(invalid))
    return None


_CHECKERS: Dict[str, Callable[[FieldRule, Any], str | None]] = {
    "text": _check_text,
    "positive": _check_positive,
    "non_negative": _check_non_negative,
    "items": _check_items,
    "checklist": _check_checklist,
    "choice": _check_choice,
    "ratings": _check_ratings,
    "words": _check_words,
}


def validate(schema: Tuple[FieldRule, ...], payload: Mapping[str, Any], prefix: str = "") -> Dict[str, str]:
    """Return a ``{field: reason}`` map of every rule the payload breaks."""
    errors: Dict[str, str] = {}
    for rule in schema:
        if rule.when is not None and not rule.when(payload):
            continue
        value = payload.get(rule.name)
        if _is_blank(value) and not rule.required:
            continue
        reason = _CHECKERS[rule.kind](rule, value)
        if reason:
            errors[f"{prefix}{rule.name}"] = reason
    return errors


def ensure_valid(schema: Tuple[FieldRule, ...], payload: Mapping[str, Any]) -> None:
    errors = validate(schema, payload)
    if errors:
        raise ValidationFailed(fields=errors)


WORK_COMPLETION_SCHEMA: Tuple[FieldRule, ...] = (
    FieldRule("work_summary", "text"),
    FieldRule("work_details", "text"),
    FieldRule("actual_duration_hours", "positive"),
    FieldRule("after_photos", "items"),
    FieldRule("quality_assurance", "checklist", items=QUALITY_ASSURANCE_ITEMS),
    FieldRule("actual_cost", "non_negative", required=False),
)

TENANT_VALIDATION_TYPE_SCHEMA: Tuple[FieldRule, ...] = (
    FieldRule("validation_type", "choice", choices=VALIDATION_TYPES),
)

TENANT_APPROVAL_SCHEMA: Tuple[FieldRule, ...] = (
    FieldRule("work_approval", "checklist", items=TENANT_APPROVAL_ITEMS),
    FieldRule("comments", "text"),
    FieldRule("satisfaction", "ratings", required=False),
)

TENANT_CONTEST_SCHEMA: Tuple[FieldRule, ...] = (
    FieldRule("issue_description", "text"),
    FieldRule("severity", "choice", choices=CONTEST_SEVERITIES),
)

ARCHIVAL_SCHEMA: Tuple[FieldRule, ...] = (
    FieldRule("category", "text", required=False),
    FieldRule("keywords", "words", required=False),
    FieldRule("retention_period", "positive", required=False),
    FieldRule("access_level", "choice", required=False, choices=ACCESS_LEVELS),
)


def manager_finalization_schema(variance_threshold_percent: float) -> Tuple[FieldRule, ...]:
    def variance_exceeded(payload: Mapping[str, Any]) -> bool:
        variance = _as_number(payload.get("budget_variance"))
        return variance is not None and abs(variance) > variance_threshold_percent

    return (
        FieldRule("admin_comments", "text"),
        FieldRule("quality_control", "checklist", items=QUALITY_CONTROL_ITEMS),
        FieldRule("documentation", "checklist", items=DOCUMENTATION_ITEMS),
        FieldRule("final_cost", "positive"),
        FieldRule("final_status", "choice", choices=FINAL_STATUSES),
        FieldRule("cost_justification", "text", when=variance_exceeded),
    )


URGENCIES = ("basse", "normale", "haute", "urgente")

INTERVENTION_CREATE_SCHEMA: Tuple[FieldRule, ...] = (
    FieldRule("title", "text"),
    FieldRule("description", "text"),
    FieldRule("urgency", "choice", choices=URGENCIES),
)

QUOTE_SUBMISSION_SCHEMA: Tuple[FieldRule, ...] = (
    FieldRule("labor_cost", "non_negative"),
    FieldRule("materials_cost", "non_negative"),
    FieldRule("total_amount", "positive"),
    FieldRule("work_details", "text"),
    FieldRule("estimated_duration_hours", "positive", required=False),
)
