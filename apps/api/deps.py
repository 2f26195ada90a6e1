"""Service wiring for the API.

Builds the transaction store, session store, credential verifier,
authenticator and ledger service from Settings once per process and
exposes them to routers as FastAPI dependencies. Tests replace the whole
container through ``app.state.services`` or ``app.dependency_overrides``.
"""

from dataclasses import dataclass

from fastapi import Request
from supabase import Client, create_client

from apps.api.core.auth import SessionAuthenticator
from apps.api.core.config import Settings
from apps.api.core.credentials import (
    CredentialVerifier,
    PasswordCredentialVerifier,
    SupabaseCredentialVerifier,
)
from apps.api.core.sessions import InMemorySessionStore, RedisSessionStore, SessionStore
from apps.api.domains.ingestion.service import LedgerService
from packages.ingestion_engine.dialect import DialectDetector
from packages.ingestion_engine.reconciliation import ReconciliationEngine
from packages.ingestion_engine.store import (
    InMemoryTransactionStore,
    RetryingTransactionStore,
    TransactionStore,
)
from packages.ingestion_engine.supabase_store import SupabaseTransactionStore


@dataclass
class Services:
    store: TransactionStore
    sessions: SessionStore
    authenticator: SessionAuthenticator
    ledger: LedgerService


def _supabase_client(settings: Settings, key: str) -> Client:
    return create_client(settings.SUPABASE_URL, key)


def build_transaction_store(settings: Settings) -> TransactionStore:
    if settings.STORE_BACKEND == "supabase":
        inner: TransactionStore = SupabaseTransactionStore(
            _supabase_client(settings, settings.SUPABASE_SERVICE_KEY)
        )
    else:
        inner = InMemoryTransactionStore()
    return RetryingTransactionStore(
        inner,
        attempts=settings.STORE_RETRY_ATTEMPTS,
        base_delay=settings.STORE_RETRY_BASE_DELAY,
        timeout=settings.STORE_TIMEOUT_SECONDS,
    )


def build_session_store(settings: Settings) -> SessionStore:
    if settings.SESSION_BACKEND == "redis":
        return RedisSessionStore.from_url(settings.REDIS_URL)
    return InMemorySessionStore()


def build_verifier(settings: Settings) -> CredentialVerifier:
    if settings.AUTH_BACKEND == "supabase":
        return SupabaseCredentialVerifier(
            _supabase_client(settings, settings.SUPABASE_ANON_KEY)
        )
    return PasswordCredentialVerifier(settings.auth_users)


def build_services(settings: Settings) -> Services:
    store = build_transaction_store(settings)
    sessions = build_session_store(settings)
    authenticator = SessionAuthenticator(
        sessions,
        build_verifier(settings),
        ttl_seconds=settings.SESSION_TTL_SECONDS,
        sliding=settings.SESSION_SLIDING,
    )
    ledger = LedgerService(
        authenticator=authenticator,
        engine=ReconciliationEngine(store),
        store=store,
        detector=DialectDetector(sample_size=settings.DETECTOR_SAMPLE_ROWS),
    )
    return Services(store=store, sessions=sessions, authenticator=authenticator, ledger=ledger)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_ledger_service(request: Request) -> LedgerService:
    return get_services(request).ledger
