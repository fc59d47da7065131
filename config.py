import os
from functools import lru_cache
from pathlib import Path


DEFAULT_REDERIVE_HORIZONS = "monthly=12,quarterly=4,annual=5"
DEFAULT_EXPENSE_HORIZONS = "monthly=24,quarterly=8,annual=10"


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_locale: str,
        rederive_horizons: dict[str, int],
        expense_horizons: dict[str, int],
        reconcile_enabled: bool,
        reconcile_hour: int,
        run_migrations: bool,
        cors_origins: list[str],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_locale = default_locale
        self.rederive_horizons = rederive_horizons
        self.expense_horizons = expense_horizons
        self.reconcile_enabled = reconcile_enabled
        self.reconcile_hour = reconcile_hour
        self.run_migrations = run_migrations
        self.cors_origins = cors_origins


def parse_horizons(raw: str) -> dict[str, int]:
    """Parse ``"monthly=12,quarterly=4"`` into ``{"monthly": 12, "quarterly": 4}``."""
    horizons: dict[str, int] = {}
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        name, sep, value = part.partition("=")
        if not sep:
            raise ValueError(f"Invalid horizon entry: {part!r}")
        count = int(value)
        if count < 0:
            raise ValueError(f"Horizon must not be negative: {part!r}")
        horizons[name.strip().lower()] = count
    return horizons


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "UTC")
    default_locale = os.getenv("LEDGER_DEFAULT_LOCALE", "en")
    rederive_horizons = parse_horizons(
        os.getenv("LEDGER_REDERIVE_HORIZONS", DEFAULT_REDERIVE_HORIZONS)
    )
    expense_horizons = parse_horizons(
        os.getenv("LEDGER_EXPENSE_HORIZONS", DEFAULT_EXPENSE_HORIZONS)
    )
    reconcile_enabled = _env_flag("LEDGER_RECONCILE_ENABLED", "0")
    reconcile_hour = int(os.getenv("LEDGER_RECONCILE_HOUR", "3"))
    run_migrations = _env_flag("LEDGER_RUN_MIGRATIONS", "1")
    cors_origins = [
        origin.strip()
        for origin in os.getenv("LEDGER_CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_locale=default_locale,
        rederive_horizons=rederive_horizons,
        expense_horizons=expense_horizons,
        reconcile_enabled=reconcile_enabled,
        reconcile_hour=reconcile_hour,
        run_migrations=run_migrations,
        cors_origins=cors_origins,
    )
