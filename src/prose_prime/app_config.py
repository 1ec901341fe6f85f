from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from prose_prime.models import Track
from prose_prime.store import DEFAULT_JURISDICTION, DEFAULT_TRACK


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str


@dataclass
class AppConfig:
    provider_name: str
    model: str
    max_tokens: int
    temperature: float
    generation_timeout_seconds: float
    context_messages: int
    store_backend: str
    store_db_path: str
    default_jurisdiction: str
    default_track: Track
    session_id: str | None
    log_level: str
    log_consumers: list | None


_DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-5-20250929",
    "openai": "gpt-4.1-mini",
}


def load_json_config(path: Path | None = None) -> dict:
    config_path = path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def parse_app_config(config: dict) -> AppConfig:
    provider_name = str(config.get("Provider", "openai")).strip().lower()
    return AppConfig(
        provider_name=provider_name,
        model=config.get("Model") or _DEFAULT_MODELS.get(provider_name, _DEFAULT_MODELS["openai"]),
        max_tokens=int(config.get("MaxTokens", 2048)),
        temperature=float(config.get("Temperature", 0.2)),
        generation_timeout_seconds=max(1.0, float(config.get("GenerationTimeoutSeconds", 30))),
        context_messages=max(1, min(12, int(config.get("ContextMessages", 12)))),
        store_backend=str(config.get("StoreBackend", "memory")).strip().lower(),
        store_db_path=str(config.get("StoreDbPath", ".prose_prime/sessions.db")),
        default_jurisdiction=str(config.get("DefaultJurisdiction", DEFAULT_JURISDICTION)).strip() or DEFAULT_JURISDICTION,
        default_track=Track.parse(config.get("DefaultTrack"), default=DEFAULT_TRACK),
        session_id=str(config.get("SessionId", "")).strip() or None,
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    if provider_name == "anthropic":
        provider_env_var = "ANTHROPIC_API_KEY"
    else:
        provider_env_var = "OPENAI_API_KEY"

    return RuntimeEnv(
        provider_api_key=os.environ.get(provider_env_var, "").strip(),
        provider_env_var=provider_env_var,
    )
