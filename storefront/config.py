from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]  # .../storefront repo root
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


def _get_float(*keys: str, default: float | None = None) -> float | None:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return float(v)


def _get_path(*keys: str, default: str) -> str:
    v = _get_env(*keys, default=default)
    return str(v)


@dataclass(frozen=True)
class Settings:
    store_name: str
    whatsapp_number: str
    currency_symbol: str
    decimals: int
    db_path: str
    media_dir: str
    public_base_url: str
    secret_key: str
    session_ttl_hours: float
    bot_token: str
    admin_email: str
    admin_password: str
    web_host: str
    web_port: int


def load_settings() -> Settings:
    return Settings(
        store_name=_get_env("STORE_NAME", default="Vijaya Sai Provisions") or "Vijaya Sai Provisions",
        whatsapp_number=_get_env("WHATSAPP_NUMBER", "WA_NUMBER", default="919951690420") or "919951690420",
        currency_symbol=_get_env("CURRENCY_SYMBOL", "CURRENCY", default="₹") or "₹",
        decimals=_get_int("DECIMALS", default=2),
        db_path=_get_path("DB_PATH", "DATABASE_PATH", default=str(ROOT_DIR / "data" / "storefront.db")),
        media_dir=_get_path("MEDIA_DIR", default=str(ROOT_DIR / "data" / "media")),
        public_base_url=(_get_env("PUBLIC_BASE_URL", default="") or "").rstrip("/"),
        secret_key=_get_env("SECRET_KEY", default="storefront-dev-secret") or "storefront-dev-secret",
        session_ttl_hours=_get_float("SESSION_TTL_HOURS", default=24.0) or 24.0,
        bot_token=_get_env("BOT_TOKEN", "TELEGRAM_BOT_TOKEN", default="") or "",
        admin_email=(_get_env("ADMIN_EMAIL", default="") or "").lower(),
        admin_password=_get_env("ADMIN_PASSWORD", default="") or "",
        web_host=_get_env("WEB_HOST", "HOST", default="127.0.0.1") or "127.0.0.1",
        web_port=_get_int("WEB_PORT", "PORT", default=8000) or 8000,
    )


settings = load_settings()
