"""Connection bootstrap for the store.

Settings are read from the process environment once at startup. Missing or
malformed values fail fast with a message naming the variable to fix.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

from .appwrite_client import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_SECONDS,
    MessagingClient,
    StorageClient,
    TablesClient,
    UsersClient,
    build_session,
)

logger = logging.getLogger(__name__)

MISSPELLED_HOST = "sanfransico.cloud.appwrite.io"

# (setting, environment variable, fallback variable)
REQUIRED_VARIABLES = (
    ("endpoint", "ENDPOINT", "NEXT_PUBLIC_ENDPOINT"),
    ("project_id", "PROJECT_ID", None),
    ("api_key", "API_KEY", None),
    ("database_id", "DATABASE_ID", None),
    ("patient_collection_id", "PATIENT_COLLECTION_ID", None),
    ("appointment_collection_id", "APPOINTMENT_COLLECTION_ID", None),
    ("bucket_id", "BUCKET_ID", "NEXT_PUBLIC_BUCKET_ID"),
)


class ConfigurationError(RuntimeError):
    """Raised when the store connection settings are missing or invalid."""


@dataclass(frozen=True)
class StoreSettings:
    endpoint: str
    project_id: str
    api_key: str
    database_id: str
    patient_collection_id: str
    appointment_collection_id: str
    bucket_id: str
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES

    def __repr__(self) -> str:
        return (
            f"StoreSettings(endpoint={self.endpoint!r}, project_id={self.project_id!r}, "
            f"database_id={self.database_id!r}, api_key='***')"
        )


@dataclass(frozen=True)
class Connection:
    """Process-wide handle to the store, shared read-only by every operation."""

    settings: StoreSettings
    tables: Any
    users: Any
    messaging: Any
    storage: Any


def _require(environ: Mapping[str, str], name: str, fallback: Optional[str]) -> str:
    value = (environ.get(name) or "").strip()
    if not value and fallback:
        value = (environ.get(fallback) or "").strip()
    if not value:
        raise ConfigurationError(
            f"Missing environment variable: {name}. "
            f"Set {name} in the process environment (or your .env file) and restart."
        )
    return value


def validate_endpoint(endpoint: str) -> str:
    """Return ``endpoint`` without a trailing slash, or raise ``ConfigurationError``."""

    if MISSPELLED_HOST in endpoint:
        raise ConfigurationError(
            f'Invalid ENDPOINT hostname: "{MISSPELLED_HOST}" (typo). '
            'Did you mean "sanfrancisco.cloud.appwrite.io"? '
            'Alternatively use "https://cloud.appwrite.io/v1".'
        )

    parsed = urlparse(endpoint)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(
            f'Invalid ENDPOINT value: "{endpoint}". '
            'Expected a URL like "https://cloud.appwrite.io/v1".'
        )
    return endpoint.rstrip("/")


def _optional_number(environ: Mapping[str, str], name: str, default: float, cast: type) -> Any:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid {name} value: {raw!r}; expected a number.") from exc
    if value < 0:
        raise ConfigurationError(f"Invalid {name} value: {raw!r}; must not be negative.")
    return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> StoreSettings:
    """Read and validate the store settings from ``environ`` (default ``os.environ``)."""

    environ = os.environ if environ is None else environ
    values = {
        setting: _require(environ, name, fallback)
        for setting, name, fallback in REQUIRED_VARIABLES
    }
    values["endpoint"] = validate_endpoint(values["endpoint"])
    return StoreSettings(
        timeout=_optional_number(environ, "STORE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS, float),
        max_retries=_optional_number(environ, "STORE_MAX_RETRIES", DEFAULT_MAX_RETRIES, int),
        **values,
    )


def connect(settings: Optional[StoreSettings] = None) -> Connection:
    """Build the shared connection handle.

    Call once during process start and pass the result to every operation.
    """

    settings = settings or load_settings()
    session = build_session(max_retries=settings.max_retries)
    common = {
        "endpoint": settings.endpoint,
        "project_id": settings.project_id,
        "api_key": settings.api_key,
        "timeout": settings.timeout,
        "session": session,
    }
    logger.info("Connecting to store %s (project %s)", settings.endpoint, settings.project_id)
    return Connection(
        settings=settings,
        tables=TablesClient(database_id=settings.database_id, **common),
        users=UsersClient(**common),
        messaging=MessagingClient(**common),
        storage=StorageClient(**common),
    )
