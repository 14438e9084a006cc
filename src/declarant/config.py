from __future__ import annotations

import os
from pathlib import Path


def app_mode() -> str:
    return os.getenv("APP_MODE", "dev").strip().lower()


def is_production() -> bool:
    return app_mode() == "prod"


def mock_disabled_user_ids() -> set[str]:
    raw = os.getenv("DISABLE_TICKETING_SYSTEM_MOCK_FOR_USER_IDS", "")
    return {user_id.strip() for user_id in raw.split(",") if user_id.strip()}


def http_timeout() -> float:
    return float(os.getenv("DECLARANT_HTTP_TIMEOUT", "30"))


def supabase_url() -> str | None:
    return os.getenv("SUPABASE_URL")


def supabase_key() -> str | None:
    return os.getenv("SUPABASE_KEY")


def sacd_api_base_url() -> str:
    return os.getenv("SACD_API_BASE_URL", "https://nowhere")


def helloasso_api_base_url() -> str:
    return os.getenv("HELLOASSO_API_BASE_URL", "https://api.helloasso.com")


def _data_dir() -> Path:
    return Path(__file__).resolve().parents[2] / "data"


def sacd_agencies_csv_path() -> Path:
    raw = os.getenv("DECLARANT_SACD_AGENCIES_CSV")
    return Path(raw) if raw else _data_dir() / "sacd-agencies.csv"


def sacem_agencies_csv_path() -> Path:
    raw = os.getenv("DECLARANT_SACEM_AGENCIES_CSV")
    return Path(raw) if raw else _data_dir() / "sacem-agencies.csv"


def cors_origins() -> list[str]:
    raw = os.getenv("DECLARANT_CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    parsed = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if "*" in parsed:
        return ["*"]
    return parsed


def log_level() -> str:
    return os.getenv("DECLARANT_LOG_LEVEL", "INFO").upper()
