from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]  # .../stickershop repo root
load_dotenv(dotenv_path=ROOT_DIR / ".env")


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_int(*keys: str, default: int | None = None) -> int | None:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return int(v)


def _get_path(*keys: str, default: str) -> str:
    v = _get_env(*keys, default=default)
    return str(v)


@dataclass(frozen=True)
class Settings:
    db_path: str
    export_dir: str
    data_dir: str
    session_secret: str
    currency: str
    host: str
    port: int
    stripe_secret_key: str
    stripe_publishable_key: str
    ebay_app_id: str
    ebay_secret: str
    ebay_api_url: str
    ebay_seller_id: str
    replicate_api_token: str
    api_base_url: str
    local_storage_path: str
    admin_username: str
    admin_password: str
    admin_email: str


settings = Settings(
    db_path=_get_path("DB_PATH", "DATABASE_PATH", default=str(ROOT_DIR / "data" / "stickershop.db")),
    export_dir=_get_path("EXPORT_DIR", default=str(ROOT_DIR / "exports")),
    data_dir=_get_path("DATA_DIR", default=str(ROOT_DIR / "data")),
    session_secret=_get_env("SESSION_SECRET", "SECRET_KEY", default="dev-session-secret") or "dev-session-secret",
    currency=_get_env("CURRENCY", default="USD") or "USD",
    host=_get_env("HOST", default="0.0.0.0") or "0.0.0.0",
    port=_get_int("PORT", default=8000) or 8000,
    stripe_secret_key=_get_env("STRIPE_SECRET_KEY", default="") or "",
    stripe_publishable_key=_get_env("STRIPE_PUBLISHABLE_KEY", "STRIPE_PUBLIC_KEY", default="") or "",
    ebay_app_id=_get_env("EBAY_APP_ID", default="") or "",
    ebay_secret=_get_env("EBAY_SECRET", "EBAY_CERT_ID", default="") or "",
    ebay_api_url=_get_env("EBAY_API_URL", default="https://api.ebay.com") or "https://api.ebay.com",
    ebay_seller_id=_get_env("EBAY_SELLER_ID", default="") or "",
    replicate_api_token=_get_env("REPLICATE_API_TOKEN", default="") or "",
    api_base_url=_get_env("API_BASE_URL", default="http://localhost:8000") or "http://localhost:8000",
    local_storage_path=_get_path(
        "LOCAL_STORAGE_PATH", default=str(Path.home() / ".stickershop" / "local_storage.json")
    ),
    admin_username=_get_env("ADMIN_USERNAME", default="admin") or "admin",
    admin_password=_get_env("ADMIN_PASSWORD", default="") or "",
    admin_email=_get_env("ADMIN_EMAIL", default="admin@stickershop.local") or "admin@stickershop.local",
)
