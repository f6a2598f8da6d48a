import os


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_flag(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return v.strip() not in {"0", "false", "False", "no", "NO", "off"}


def get_database_url() -> str:
    return os.getenv("DATABASE_URL", "postgresql://localhost/automation_runner")


def get_batch_size() -> int:
    return max(1, _env_int("AUTOMATION_BATCH_SIZE", 50))


def get_poll_seconds() -> float:
    return _env_float("AUTOMATION_POLL_SECONDS", 5.0)


def get_webhook_timeout_seconds() -> float:
    return _env_float("AUTOMATION_WEBHOOK_TIMEOUT_SECONDS", 10.0)


def worker_enabled() -> bool:
    # Disable by default under pytest to keep tests deterministic.
    if os.getenv("PYTEST_CURRENT_TEST"):
        return False
    return _env_flag("AUTOMATION_WORKER_ENABLED", True)
