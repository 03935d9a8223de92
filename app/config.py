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


DEFAULT_ROLE_ASSIGNMENTS = (
    "PROJECT_MANAGER:initiator;"
    "PROCUREMENT_OFFICER:reviewer,evaluator;"
    "RESOURCE_PLANNER:ordering;"
    "SERVICE_PROVIDER:provider;"
    "SYSTEM_ADMIN:admin"
)


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "servicebid.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-servicebid")
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    ROLE_ASSIGNMENTS = os.environ.get("ROLE_ASSIGNMENTS", DEFAULT_ROLE_ASSIGNMENTS)
    DEFAULT_BIDDING_CYCLE_DAYS = _int_env("DEFAULT_BIDDING_CYCLE_DAYS", 7)
    DEFAULT_OFFER_CURRENCY = os.environ.get("DEFAULT_OFFER_CURRENCY", "EUR")
    REQUESTS_PAGE_LIMIT_MAX = _int_env("REQUESTS_PAGE_LIMIT_MAX", 100)

    EXPIRY_SWEEP_ENABLED = _bool_env("EXPIRY_SWEEP_ENABLED", False)
    EXPIRY_SWEEP_INTERVAL_SECONDS = _int_env("EXPIRY_SWEEP_INTERVAL_SECONDS", 300)
    EXPIRY_SWEEP_LIMIT = _int_env("EXPIRY_SWEEP_LIMIT", 200)

    RATE_LIMIT_ENABLED = _bool_env("RATE_LIMIT_ENABLED", True)
    RATE_LIMIT_WINDOW_SECONDS = _int_env("RATE_LIMIT_WINDOW_SECONDS", 60)
    RATE_LIMIT_MAX_REQUESTS = _int_env("RATE_LIMIT_MAX_REQUESTS", 300)
    SECURITY_HEADERS_ENABLED = _bool_env("SECURITY_HEADERS_ENABLED", True)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL nao definida para ambiente de producao.")
        if env == "production" and self.SECRET_KEY == "dev-secret-servicebid":
            raise RuntimeError("SECRET_KEY insegura para producao.")
