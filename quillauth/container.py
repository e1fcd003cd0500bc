"""Service wiring: builds the credential services from settings."""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
import structlog

from .auth.gate import AccessGate
from .config import Settings
from .metrics import Metrics
from .services.admin import AdminService
from .services.credentials import (
    CredentialLifecycle,
    CredentialStore,
    InMemoryCredentialStore,
    RedisCredentialStore,
    SecretHasher,
    SigningKeyRing,
    TokenCodec,
)
from .services.email import EmailSender, LogEmailSender, SmtpEmailSender

log = structlog.get_logger()


@dataclass
class ServiceContainer:
    settings: Settings
    store: CredentialStore
    hasher: SecretHasher
    codec: TokenCodec
    email_sender: EmailSender
    lifecycle: CredentialLifecycle
    admin: AdminService
    access_gate: AccessGate
    metrics: Optional[Metrics] = None


def build_codec(settings: Settings) -> TokenCodec:
    """Create the token codec; signing keys are fixed from here on."""
    return TokenCodec(
        access_keys=SigningKeyRing(
            active_kid=settings.JWT_ACCESS_KEY_ID,
            active_secret=settings.JWT_ACCESS_SECRET,
            retired=settings.retired_access_keys,
        ),
        refresh_keys=SigningKeyRing(
            active_kid=settings.JWT_REFRESH_KEY_ID,
            active_secret=settings.JWT_REFRESH_SECRET,
            retired=settings.retired_refresh_keys,
        ),
        access_ttl=timedelta(minutes=settings.JWT_ACCESS_TTL_MINUTES),
        refresh_ttl=timedelta(hours=settings.JWT_REFRESH_TTL_HOURS),
    )


def build_store(settings: Settings) -> CredentialStore:
    """
    Create the credential store selected by STORE_BACKEND.

    Falls back to the in-memory store when Redis is requested but not
    configured.
    """
    if settings.STORE_BACKEND == "redis":
        if not settings.REDIS_URL:
            log.warning(
                "store.fallback",
                requested="redis",
                actual="memory",
                reason="REDIS_URL not configured",
            )
            return InMemoryCredentialStore()

        log.info("store.selected", type="redis")
        return RedisCredentialStore(redis_url=str(settings.REDIS_URL))

    log.info("store.selected", type="memory")
    return InMemoryCredentialStore()


def build_email_sender(settings: Settings) -> EmailSender:
    if settings.EMAIL_PROVIDER == "smtp":
        return SmtpEmailSender(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            from_address=settings.EMAIL_FROM,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
        )
    return LogEmailSender()


def build_container(
    settings: Settings,
    metrics: Optional[Metrics] = None,
    store: Optional[CredentialStore] = None,
    email_sender: Optional[EmailSender] = None,
) -> ServiceContainer:
    """
    Assemble all services.

    Args:
        settings: Application settings
        metrics: Prometheus metrics sink for lifecycle events
        store: Store override (tests)
        email_sender: Email sender override (tests)
    """
    store = store or build_store(settings)
    email_sender = email_sender or build_email_sender(settings)
    hasher = SecretHasher()
    codec = build_codec(settings)
    lifecycle = CredentialLifecycle(
        store=store,
        codec=codec,
        hasher=hasher,
        email_sender=email_sender,
        password_reset_ttl=timedelta(minutes=settings.PASSWORD_RESET_TTL_MINUTES),
        frontend_base_url=settings.FRONTEND_BASE_URL,
        metrics=metrics,
    )
    return ServiceContainer(
        settings=settings,
        store=store,
        hasher=hasher,
        codec=codec,
        email_sender=email_sender,
        lifecycle=lifecycle,
        admin=AdminService(store),
        access_gate=AccessGate(codec),
        metrics=metrics,
    )
