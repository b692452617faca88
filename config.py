import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        currency_symbol: str,
        items_per_page: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.currency_symbol = currency_symbol
        self.items_per_page = items_per_page


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Asia/Kolkata")
    csrf_secret = os.getenv(
        "LEDGER_CSRF_SECRET",
        "5b0d3c1f9e8a47d2b6c4e1a09f73d58e2c6b4a1d9e0f83c7a5b2d4e6f8091a3c",
    )
    currency_symbol = os.getenv("LEDGER_CURRENCY_SYMBOL", "₹")
    items_per_page = max(int(os.getenv("LEDGER_ITEMS_PER_PAGE", "15")), 1)
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        currency_symbol=currency_symbol,
        items_per_page=items_per_page,
    )
