"""Connector interfaces for the Salus records layer."""

from __future__ import annotations

from .appwrite_client import (
    ErrorKind,
    MessagingClient,
    Query,
    StorageClient,
    StoreAPIError,
    StoreClientError,
    TablesClient,
    UsersClient,
    unique_id,
)
from .config import ConfigurationError, Connection, StoreSettings, connect, load_settings

__all__ = [
    "ConfigurationError",
    "Connection",
    "ErrorKind",
    "MessagingClient",
    "Query",
    "StorageClient",
    "StoreAPIError",
    "StoreClientError",
    "StoreSettings",
    "TablesClient",
    "UsersClient",
    "connect",
    "load_settings",
    "unique_id",
]
