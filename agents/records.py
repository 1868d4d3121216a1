"""Schema-tolerant row creation shared by the patient and appointment agents."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from connector import Connection, ErrorKind, StoreAPIError

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


class RecordsError(RuntimeError):
    """Base exception for failed record operations."""


class RecordCreationError(RecordsError):
    """Raised when a record could not be created."""


class RecordRetrievalError(RecordsError):
    """Raised when a record could not be read."""


class RecordUpdateError(RecordsError):
    """Raised when a record could not be updated."""


class NotificationError(RecordsError):
    """Raised when a notification could not be delivered."""


def validate_identifier(value: str, label: str) -> str:
    """Return ``value`` stripped, or raise ``ValueError`` if it is blank or not a string."""

    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} must be a non-empty string")
    return value.strip()


def notify_change(on_change: Optional[ChangeListener], table_id: str) -> None:
    """Tell ``on_change`` that ``table_id`` was written.

    Listener failures are logged; the write they follow has already succeeded.
    """

    if on_change is None:
        return
    try:
        on_change(table_id)
    except Exception:  # noqa: BLE001 - a listener must not turn a stored write into a failure
        logger.exception("Change listener failed for table %s", table_id)


def create_record(
    connection: Connection,
    table_id: str,
    record_id: str,
    data: Mapping[str, Any],
    *,
    on_change: Optional[ChangeListener] = None,
) -> Dict[str, Any]:
    """Create a row, dropping one attribute the collection schema does not know.

    When the store rejects the payload because of an unknown attribute, that
    attribute is removed from a copy of ``data`` and the create is retried
    once. A payload with two or more unknown attributes therefore fails.
    """

    payload = dict(data)
    try:
        try:
            document = connection.tables.create_row(table_id, record_id, payload)
        except StoreAPIError as exc:
            if exc.kind is not ErrorKind.UNKNOWN_ATTRIBUTE or exc.attribute not in payload:
                raise
            logger.warning(
                "Table %s does not define attribute %r; retrying create of %s without it",
                table_id,
                exc.attribute,
                record_id,
            )
            payload.pop(exc.attribute)
            document = connection.tables.create_row(table_id, record_id, payload)
    except StoreAPIError as exc:
        logger.error("Failed to create record %s in table %s: %s", record_id, table_id, exc)
        raise RecordCreationError(f"Could not create record {record_id} in table {table_id}") from exc

    logger.info("Created record %s in table %s", record_id, table_id)
    notify_change(on_change, table_id)
    return document


__all__ = [
    "ChangeListener",
    "NotificationError",
    "RecordCreationError",
    "RecordRetrievalError",
    "RecordUpdateError",
    "RecordsError",
    "create_record",
    "notify_change",
    "validate_identifier",
]
