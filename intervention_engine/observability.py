from __future__ import annotations

import contextvars
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


_LOG_REQUEST_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("log_request_id", default="")


def _normalize_request_id(value: str | None) -> str:
    return str(value or "").strip() or "n/a"


def set_log_request_id(request_id: str | None) -> None:
    _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))


def _background_request_id(default: str | None = None) -> str:
    request_id = str(_LOG_REQUEST_ID_CTX.get() or "").strip()
    if request_id:
        return request_id
    return default or "n/a"


class JsonLogFormatter(logging.Formatter):
    _base_keys = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = current_request_id(default="n/a")
            payload["path"] = request.path
            payload["method"] = request.method
            if request.url_rule is not None:
                payload["route"] = request.url_rule.rule
        else:
            record_request_id = str(getattr(record, "request_id", "") or "").strip()
            payload["request_id"] = record_request_id or _background_request_id(default="n/a")

        for key, value in record.__dict__.items():
            if key in self._base_keys or key.startswith("_"):
                continue
            if key in payload:
                continue
            if callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if request_id:
        set_log_request_id(request_id)
        return request_id
    incoming = str(request.headers.get("X-Request-Id") or "").strip()
    request_id = incoming or str(uuid.uuid4())
    g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "").strip()
        if request_id:
            return request_id
    return _background_request_id(default=default)


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._transitions_total: Dict[tuple[str, str, str], int] = {}
        self._stale_state_total: Dict[str, int] = {}
        self._authorization_denied_total: Dict[str, int] = {}
        self._domain_events_total: Dict[str, int] = {}
        self._notification_sent_total = 0
        self._notification_failed_total = 0

    def observe_transition(self, from_status: str, to_status: str, action: str) -> None:
        key = (str(from_status), str(to_status), str(action))
        with self._lock:
            self._transitions_total[key] = self._transitions_total.get(key, 0) + 1

    def observe_stale_state(self, entity: str) -> None:
        with self._lock:
            self._stale_state_total[entity] = self._stale_state_total.get(entity, 0) + 1

    def observe_authorization_denied(self, action: str) -> None:
        with self._lock:
            self._authorization_denied_total[action] = self._authorization_denied_total.get(action, 0) + 1

    def observe_domain_event(self, event_type: str) -> None:
        with self._lock:
            self._domain_events_total[event_type] = self._domain_events_total.get(event_type, 0) + 1

    def observe_notification(self, ok: bool) -> None:
        with self._lock:
            if ok:
                self._notification_sent_total += 1
            else:
                self._notification_failed_total += 1

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "transitions_total": sum(self._transitions_total.values()),
                "transitions": [
                    {"from": key[0], "to": key[1], "action": key[2], "count": count}
                    for key, count in sorted(self._transitions_total.items())
                ],
                "stale_state_total": dict(self._stale_state_total),
                "authorization_denied_total": dict(self._authorization_denied_total),
                "domain_events_total": dict(self._domain_events_total),
                "notifications": {
                    "sent": self._notification_sent_total,
                    "failed": self._notification_failed_total,
                },
            }

    def reset(self) -> None:
        with self._lock:
            self._transitions_total.clear()
            self._stale_state_total.clear()
            self._authorization_denied_total.clear()
            self._domain_events_total.clear()
            self._notification_sent_total = 0
            self._notification_failed_total = 0


_METRICS = MetricsRegistry()


def observe_transition(from_status: str, to_status: str, action: str) -> None:
    _METRICS.observe_transition(from_status, to_status, action)


def observe_stale_state(entity: str = "intervention") -> None:
    _METRICS.observe_stale_state(entity)


def observe_authorization_denied(action: str) -> None:
    _METRICS.observe_authorization_denied(action)


def observe_domain_event(event_type: str) -> None:
    _METRICS.observe_domain_event(event_type)


def observe_notification(ok: bool) -> None:
    _METRICS.observe_notification(ok)


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
