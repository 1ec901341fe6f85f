from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from prose_prime.app_config import AppConfig, RuntimeEnv
from prose_prime.logging_config import setup_logging
from prose_prime.orchestrator import CoachOrchestrator
from prose_prime.packet import PacketGenerator
from prose_prime.provider import CoachProvider, create_provider
from prose_prime.safety import SafetyClassifier
from prose_prime.service import SessionService
from prose_prime.store import InMemoryBackend, RecordBackend, SessionStore, SqliteBackend


@dataclass
class AppRuntime:
    service: SessionService
    store: SessionStore
    provider: CoachProvider | None
    log_descriptions: list[str]

    def close(self) -> None:
        self.store.close()


def create_backend(app: AppConfig) -> RecordBackend:
    if app.store_backend == "sqlite":
        if app.store_db_path == ":memory:":
            return SqliteBackend(app.store_db_path)
        db_path = Path(app.store_db_path)
        if not db_path.is_absolute():
            db_path = Path.cwd() / db_path
        return SqliteBackend(str(db_path))
    if app.store_backend != "memory":
        raise ValueError(f"Unknown store backend: {app.store_backend!r}. Supported: 'memory', 'sqlite'")
    return InMemoryBackend()


def build_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    provider: CoachProvider | None = None,
    configure_logging: bool = True,
) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers) if configure_logging else []

    if provider is None and env.provider_api_key:
        provider = create_provider(
            app.provider_name,
            env.provider_api_key,
            timeout_seconds=app.generation_timeout_seconds,
        )
    if provider is None:
        logger.warning(f"{env.provider_env_var} is not set; replies use the built-in fallback coach")

    store = SessionStore(
        create_backend(app),
        default_jurisdiction=app.default_jurisdiction,
        default_track=app.default_track,
    )
    classifier = SafetyClassifier()

    orchestrator = CoachOrchestrator(
        store=store,
        provider=provider,
        model=app.model,
        max_tokens=app.max_tokens,
        temperature=app.temperature,
        timeout_seconds=app.generation_timeout_seconds,
        context_messages=app.context_messages,
        classifier=classifier,
    )
    packets = PacketGenerator(
        store=store,
        provider=provider,
        model=app.model,
        max_tokens=max(app.max_tokens, 4096),
        temperature=app.temperature,
        timeout_seconds=app.generation_timeout_seconds,
        classifier=classifier,
    )

    return AppRuntime(
        service=SessionService(store, orchestrator, packets),
        store=store,
        provider=provider,
        log_descriptions=log_descriptions,
    )
