from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class Settings:
    vat_rate: float = 0.18
    payment_terms_days: int = 30
    expiry_horizon_days: int = 7
    default_location: str = "Zone-A"
    db_timeout_seconds: float = 30.0


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "TradeBackOffice") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    override = os.environ.get("TBO_HOME", "").strip()
    if override:
        base = Path(override)

    logs = base / "logs"
    db = base / "backoffice.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


def load_settings(env: dict[str, str] | None = None) -> Settings:
    env = os.environ if env is None else env
    defaults = Settings()
    return Settings(
        vat_rate=float(env.get("TBO_VAT_RATE", defaults.vat_rate)),
        payment_terms_days=int(env.get("TBO_PAYMENT_TERMS_DAYS", defaults.payment_terms_days)),
        expiry_horizon_days=int(env.get("TBO_EXPIRY_HORIZON_DAYS", defaults.expiry_horizon_days)),
        default_location=str(env.get("TBO_DEFAULT_LOCATION", defaults.default_location)),
        db_timeout_seconds=float(env.get("TBO_DB_TIMEOUT_SECONDS", defaults.db_timeout_seconds)),
    )
