import os
from functools import lru_cache
from pathlib import Path

DEFAULT_EXCLUDED_ROOTS = (
    "hors budget",
    "projets financés",
    "provision",
    "virements internes",
)


class Settings:
    def __init__(
        self,
        database_url: str,
        ledger_path: Path,
        timezone: str,
        savings_category_ids: tuple[str, ...],
        internal_transfer_category_ids: tuple[str, ...],
        excluded_roots: tuple[str, ...],
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.ledger_path = ledger_path
        self.timezone = timezone
        self.savings_category_ids = savings_category_ids
        self.internal_transfer_category_ids = internal_transfer_category_ids
        self.excluded_roots = excluded_roots
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SAVINGS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_list(raw: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "savings.db"
    database_url = os.getenv("SAVINGS_DATABASE_URL", f"sqlite:///{default_db}")
    ledger_path = Path(
        os.getenv("SAVINGS_LEDGER_PATH", str(data_dir / "Comptes.cdb"))
    ).resolve()
    timezone = os.getenv("SAVINGS_TIMEZONE", "Europe/Paris")
    savings_category_ids = _split_list(os.getenv("SAVINGS_TRANSFER_CATEGORY_IDS", ""))
    internal_transfer_category_ids = _split_list(
        os.getenv("SAVINGS_INTERNAL_TRANSFER_CATEGORY_IDS", "")
    )
    excluded_roots = _split_list(
        os.getenv("SAVINGS_EXCLUDED_ROOTS", ",".join(DEFAULT_EXCLUDED_ROOTS))
    )
    log_level = os.getenv("SAVINGS_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        ledger_path=ledger_path,
        timezone=timezone,
        savings_category_ids=savings_category_ids,
        internal_transfer_category_ids=internal_transfer_category_ids,
        excluded_roots=excluded_roots,
        log_level=log_level,
    )
