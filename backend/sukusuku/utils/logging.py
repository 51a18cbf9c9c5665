"""
Production logging utility for structured JSON logging.

Every record carries:
- timestamp (ISO8601)
- level
- service
- environment
- event (for records written through the helpers below)

Optional fields (included when applicable):
- user_id
- app
- duration_ms

Usage:
    from sukusuku.utils.logging import configure_logging, log_user_login

    configure_logging('sukusuku-api', 'INFO')
    log_user_login(logger, user_id='123', provider='email')
"""
import logging
import sys
from typing import Optional, Dict, Any
from pythonjsonlogger import jsonlogger

# Libraries that log every outbound request at INFO
QUIET_LOGGERS = ("httpx", "httpcore")


class ServiceFilter(logging.Filter):
    """Stamp service and environment on every record."""

    def __init__(self, service_name: str, environment: str):
        super().__init__()
        self.service_name = service_name
        self.environment = environment

    def filter(self, record):
        record.service = self.service_name
        record.environment = self.environment
        return True


class StructuredLogger:
    """Structured JSON logger with mandatory fields."""

    _configured = False

    @classmethod
    def configure(cls, service_name: str, log_level: str = "INFO", environment: str = "dev"):
        """
        Route all logging through one JSON handler on stdout.

        Safe to call more than once; only the first call takes effect.
        """
        if cls._configured:
            return

        formatter = jsonlogger.JsonFormatter(
            '%(timestamp)s %(level)s %(name)s %(message)s',
            timestamp=True,
            json_ensure_ascii=False
        )
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        handler.addFilter(ServiceFilter(service_name, environment))

        root_logger = logging.getLogger()
        root_logger.handlers = [handler]
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        cls._configured = True


def _build_log_extra(
    event: str,
    user_id: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs
) -> Dict[str, Any]:
    """Extra fields for a structured record; empty optional fields are left out."""
    extra = {"event": event, **kwargs}

    if user_id:
        extra["user_id"] = user_id
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)

    return extra


# Account event functions

def log_user_registered(logger: logging.Logger, user_id: str, provider: str, **kwargs):
    """Log creation of a new account."""
    extra = _build_log_extra(event="user_registered", user_id=user_id, provider=provider, **kwargs)
    logger.info(f"User registered: {user_id}", extra=extra)


def log_user_login(logger: logging.Logger, user_id: str, provider: str, **kwargs):
    """Log a successful sign-in."""
    extra = _build_log_extra(event="user_login", user_id=user_id, provider=provider, **kwargs)
    logger.info(f"User logged in: {user_id}", extra=extra)


def log_login_failed(logger: logging.Logger, reason: str, **kwargs):
    """Log a rejected sign-in. Never include the submitted password."""
    extra = _build_log_extra(event="login_failed", reason=reason, **kwargs)
    logger.warning(f"Login failed: {reason}", extra=extra)


def log_token_issued(
    logger: logging.Logger,
    user_id: str,
    token_type: str,
    app: Optional[str] = None,
    **kwargs
):
    """Log minting of a session or embed token."""
    extra = _build_log_extra(event="token_issued", user_id=user_id, token_type=token_type, **kwargs)
    if app:
        extra["app"] = app
    logger.info(f"Token issued: {token_type} for {user_id}", extra=extra)


# Credit event functions

def log_credits_fetched(
    logger: logging.Logger,
    user_id: str,
    penora_credits: int,
    penora_source: str,
    imagegene_credits: int,
    imagegene_source: str,
    duration_ms: Optional[float] = None,
    **kwargs
):
    """Log the reconciled credit snapshot returned to a client."""
    extra = _build_log_extra(
        event="credits_fetched",
        user_id=user_id,
        duration_ms=duration_ms,
        penora_credits=penora_credits,
        penora_source=penora_source,
        imagegene_credits=imagegene_credits,
        imagegene_source=imagegene_source,
        **kwargs
    )
    logger.info(
        f"Credits for {user_id}: Penora={penora_credits} ({penora_source}), "
        f"ImageGene={imagegene_credits} ({imagegene_source})",
        extra=extra
    )


def log_remote_credit_failure(
    logger: logging.Logger,
    app: str,
    user_id: str,
    error: str,
    duration_ms: Optional[float] = None,
    **kwargs
):
    """
    Log a failed remote credit lookup.

    Remote failures are expected and masked with stored values, so this is a
    warning without a stack trace.
    """
    extra = _build_log_extra(
        event="remote_credit_failure",
        user_id=user_id,
        duration_ms=duration_ms,
        app=app,
        error=str(error),
        **kwargs
    )
    logger.warning(f"Remote credit lookup failed: {app} - {error}", extra=extra)


def log_credits_synced(
    logger: logging.Logger,
    user_id: str,
    penora_credits: int,
    imagegene_credits: int,
    **kwargs
):
    """Log a credit decrement reported by an external tool."""
    extra = _build_log_extra(
        event="credits_synced",
        user_id=user_id,
        penora_credits=penora_credits,
        imagegene_credits=imagegene_credits,
        **kwargs
    )
    logger.info(
        f"Credits synced for {user_id}: Penora {penora_credits}, ImageGene {imagegene_credits}",
        extra=extra
    )


# Email event functions

def log_email_failure(
    logger: logging.Logger,
    provider: str,
    purpose: str,
    error: str,
    **kwargs
):
    """Log an email provider failure."""
    extra = _build_log_extra(
        event="email_failure",
        provider=provider,
        purpose=purpose,
        error=str(error),
        **kwargs
    )
    logger.error(f"Email failure: {provider}.{purpose} - {error}", extra=extra)


def configure_logging(service_name: str, log_level: str = "INFO", environment: str = "dev"):
    """Configure logging (alias for StructuredLogger.configure)."""
    StructuredLogger.configure(service_name, log_level, environment)
