import math
import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if math.isfinite(parsed) else default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "interventions.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-interventions")
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Workflow policies
    QUOTE_SIBLING_POLICY = os.environ.get("QUOTE_SIBLING_POLICY", "reject")
    CONTEST_TARGET_STATUS = os.environ.get("CONTEST_TARGET_STATUS", "en_cours")
    BUDGET_VARIANCE_THRESHOLD_PERCENT = _float_env("BUDGET_VARIANCE_THRESHOLD_PERCENT", 20.0)
    SLOT_REJECT_REASON_MIN_LENGTH = _int_env("SLOT_REJECT_REASON_MIN_LENGTH", 10)
    STALE_STATE_RETRY_ATTEMPTS = _int_env("STALE_STATE_RETRY_ATTEMPTS", 1)
    ARCHIVE_RETENTION_YEARS = _int_env("ARCHIVE_RETENTION_YEARS", 7)
    NOTIFICATIONS_ENABLED = _bool_env("NOTIFICATIONS_ENABLED", True)
    # Slot dates and times are wall-clock values in this zone.
    SCHEDULING_TIMEZONE = os.environ.get("SCHEDULING_TIMEZONE", "UTC")

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL non definie pour l'environnement de production.")
        if env == "production" and self.SECRET_KEY == "dev-secret-interventions":
            raise RuntimeError("SECRET_KEY non securisee pour la production.")
