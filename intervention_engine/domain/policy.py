from __future__ import annotations

from dataclasses import dataclass
from datetime import timezone, tzinfo
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from intervention_engine.domain.status_machine import CONTEST_TARGET_CHOICES, EN_COURS


SIBLING_REJECT = "reject"
SIBLING_KEEP_PENDING = "keep_pending"
SIBLING_POLICIES = frozenset({SIBLING_REJECT, SIBLING_KEEP_PENDING})


@dataclass(frozen=True)
class EnginePolicy:
    """Tunable workflow behaviour, resolved once from the Flask config."""

    quote_sibling_policy: str = SIBLING_REJECT
    contest_target_status: str = EN_COURS
    budget_variance_threshold_percent: float = 20.0
    slot_reject_reason_min_length: int = 10
    stale_state_retry_attempts: int = 1
    archive_retention_years: int = 7
    scheduling_timezone: str = "UTC"

    def __post_init__(self) -> None:
        if self.quote_sibling_policy not in SIBLING_POLICIES:
            raise ValueError(f"QUOTE_SIBLING_POLICY must be one of {sorted(SIBLING_POLICIES)}")
        if self.contest_target_status not in CONTEST_TARGET_CHOICES:
            raise ValueError(f"CONTEST_TARGET_STATUS must be one of {sorted(CONTEST_TARGET_CHOICES)}")
        if self.budget_variance_threshold_percent < 0:
            raise ValueError("BUDGET_VARIANCE_THRESHOLD_PERCENT must be positive")
        try:
            self.slot_timezone
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"SCHEDULING_TIMEZONE unknown: {self.scheduling_timezone!r}") from None

    @property
    def slot_timezone(self) -> tzinfo:
        if self.scheduling_timezone.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.scheduling_timezone)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "EnginePolicy":
        return cls(
            quote_sibling_policy=str(config.get("QUOTE_SIBLING_POLICY") or SIBLING_REJECT).strip().lower(),
            contest_target_status=str(config.get("CONTEST_TARGET_STATUS") or EN_COURS).strip().lower(),
            budget_variance_threshold_percent=float(config.get("BUDGET_VARIANCE_THRESHOLD_PERCENT", 20)),
            slot_reject_reason_min_length=int(config.get("SLOT_REJECT_REASON_MIN_LENGTH", 10)),
            stale_state_retry_attempts=max(0, int(config.get("STALE_STATE_RETRY_ATTEMPTS", 1))),
            archive_retention_years=int(config.get("ARCHIVE_RETENTION_YEARS", 7)),
            scheduling_timezone=str(config.get("SCHEDULING_TIMEZONE") or "UTC").strip(),
        )
