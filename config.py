import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        users: dict[str, str],
        query_timeout_secs: float,
        scheduler_hour: int,
        scheduler_minute: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.users = users
        self.query_timeout_secs = query_timeout_secs
        self.scheduler_hour = scheduler_hour
        self.scheduler_minute = scheduler_minute


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINTRACK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def parse_users(raw: str) -> dict[str, str]:
    """Parse ``owner:secret`` pairs separated by commas."""
    users: dict[str, str] = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        owner, sep, secret = chunk.partition(":")
        if not sep or not owner.strip() or not secret:
            raise ValueError(f"Invalid FINTRACK_USERS entry: {chunk!r}")
        users[owner.strip()] = secret
    return users


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "fintrack.db"
    database_url = os.getenv("FINTRACK_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINTRACK_TIMEZONE", "Asia/Taipei")
    session_secret = os.getenv(
        "FINTRACK_SESSION_SECRET",
        "3f0c9d1e7a5b24c86e1f0a9b7d3c5e2f41a8b6c0d9e7f3a2b5c8d1e4f7a0b3c6",
    )
    users = parse_users(os.getenv("FINTRACK_USERS", "demo:demo"))
    query_timeout_secs = float(os.getenv("FINTRACK_QUERY_TIMEOUT_SECS", "10"))
    scheduler_hour = int(os.getenv("FINTRACK_SCHEDULER_HOUR", "0"))
    scheduler_minute = int(os.getenv("FINTRACK_SCHEDULER_MINUTE", "5"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        users=users,
        query_timeout_secs=query_timeout_secs,
        scheduler_hour=scheduler_hour,
        scheduler_minute=scheduler_minute,
    )
