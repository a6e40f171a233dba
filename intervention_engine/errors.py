from __future__ import annotations

from typing import Any, Dict, Mapping

from intervention_engine.ui_strings import error_message


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "Impossible de terminer l'operation.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class InvalidTransition(UserActionError):
    default_code = "invalid_transition"
    default_message_key = "invalid_transition"
    default_http_status = 409

    def __init__(self, status: str | None = None, action: str | None = None, role: str | None = None, **kwargs: Any) -> None:
        payload = dict(kwargs.pop("payload", None) or {})
        payload.update({"status": status, "action": action, "role": role})
        kwargs.setdefault("details", f"{action!s} not allowed for {role!s} from {status!s}")
        super().__init__(payload=payload, **kwargs)
        self.status = status
        self.action = action
        self.role = role


class StaleState(UserActionError):
    default_code = "stale_state"
    default_message_key = "stale_state"
    default_http_status = 409

    def __init__(self, expected: str | None = None, actual: str | None = None, entity: str = "intervention", **kwargs: Any) -> None:
        payload = dict(kwargs.pop("payload", None) or {})
        payload.update({"entity": entity, "expected_status": expected, "current_status": actual})
        kwargs.setdefault("details", f"{entity} expected {expected!s} but found {actual!s}")
        super().__init__(payload=payload, **kwargs)
        self.entity = entity
        self.expected = expected
        self.actual = actual


class ValidationFailed(UserActionError):
    default_code = "validation_failed"
    default_message_key = "validation_failed"
    default_http_status = 422

    def __init__(self, fields: Mapping[str, str] | None = None, **kwargs: Any) -> None:
        payload = dict(kwargs.pop("payload", None) or {})
        self.fields = dict(fields or {})
        payload["fields"] = self.fields
        if self.fields and "details" not in kwargs:
            kwargs["details"] = "; ".join(f"{name}: {reason}" for name, reason in self.fields.items())
        super().__init__(payload=payload, **kwargs)


class AuthorizationDenied(UserActionError):
    default_code = "permission_denied"
    default_message_key = "permission_denied"
    default_http_status = 403


class NotFound(UserActionError):
    default_code = "not_found"
    default_message_key = "not_found"
    default_http_status = 404


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True
