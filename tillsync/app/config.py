import os


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except Exception:
        return default


class Settings:
    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        # Local durable storage for the device (one sqlite file per store/device).
        self.data_path = os.getenv('TILLSYNC_DATA_PATH', 'tillsync.sqlite')

        # Sync timers. Debounce coalesces bursts of edits into one push;
        # heartbeat keeps several devices convergent without local edits.
        self.debounce_seconds = _env_float("TILLSYNC_DEBOUNCE_SECONDS", 5.0)
        self.heartbeat_seconds = _env_float("TILLSYNC_HEARTBEAT_SECONDS", 30.0)
        self.remote_timeout_seconds = _env_float("TILLSYNC_REMOTE_TIMEOUT_SECONDS", 15.0)

        # First-run admin seed. Change the password after the first login.
        self.initial_admin_username = (os.getenv("TILLSYNC_INITIAL_ADMIN_USERNAME") or "").strip() or "admin"
        self.initial_admin_password = os.getenv("TILLSYNC_INITIAL_ADMIN_PASSWORD") or "Admin@123456"

        self.activity_log_cap = _env_int("TILLSYNC_ACTIVITY_LOG_CAP", 500)

        # Remote store (server side of the sync wire contract).
        self.remote_store_secret = (os.getenv("REMOTE_STORE_SECRET") or "").strip()
        self.remote_store_db_path = os.getenv("REMOTE_STORE_DB_PATH", "remote_store.sqlite")
        self.remote_store_backup_limit = _env_int("REMOTE_STORE_BACKUP_LIMIT", 50)
        self.remote_store_lock_timeout = _env_float("REMOTE_STORE_LOCK_TIMEOUT_SECONDS", 30.0)

        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

settings = Settings()
