"""Patient agent providing user identity, registration and patient lookup.

Patient rows exist under two key schemes. Current deployments key the row by
the owning user's id; older ones used a random row id and stored the user id
in the ``userID`` attribute. ``get_patient_by_user`` finds the row under
either scheme, and registration writes both so that either lookup succeeds.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from connector import Connection, ErrorKind, Query, StoreAPIError, StoreSettings, unique_id

from agents.records import (
    ChangeListener,
    RecordCreationError,
    RecordRetrievalError,
    create_record,
    validate_identifier,
)

logger = logging.getLogger(__name__)

LEGACY_USER_ATTRIBUTE = "userID"
LEGACY_USER_ATTRIBUTE_ALIASES = frozenset({"userID", "userId"})


@dataclass(frozen=True)
class IdentificationDocument:
    """An uploaded identification document: raw bytes plus the original file name."""

    content: bytes
    filename: str


def create_user(
    connection: Connection,
    *,
    email: str,
    phone: Optional[str] = None,
    name: Optional[str] = None,
) -> Dict[str, Any]:
    """Create an identity user, or return the existing one with the same email."""

    email = validate_identifier(email, "email")
    try:
        return connection.users.create(unique_id(), email=email, phone=phone, name=name)
    except StoreAPIError as exc:
        if exc.kind is not ErrorKind.CONFLICT:
            raise RecordCreationError(f"Could not create user {email}") from exc
        logger.info("User %s already exists; returning the existing record", email)

    try:
        existing = connection.users.list([Query.equal("email", [email])])
    except StoreAPIError as exc:
        raise RecordRetrievalError(f"Could not look up existing user {email}") from exc
    users = existing.get("users") or []
    if not users:
        raise RecordRetrievalError(f"User {email} reported as existing but was not found")
    return users[0]


def get_user(connection: Connection, user_id: str) -> Optional[Dict[str, Any]]:
    user_id = validate_identifier(user_id, "user_id")
    try:
        return connection.users.get(user_id)
    except StoreAPIError as exc:
        if exc.kind is ErrorKind.NOT_FOUND:
            return None
        raise RecordRetrievalError(f"Could not retrieve user {user_id}") from exc


def identification_document_url(settings: StoreSettings, file_id: str) -> str:
    """Derive the view URL for a stored identification document."""

    file_id = validate_identifier(file_id, "file_id")
    return (
        f"{settings.endpoint}/storage/buckets/{settings.bucket_id}/files/{file_id}"
        f"/view?project={settings.project_id}"
    )


def build_patient_data(
    user_id: str,
    patient: Mapping[str, Any],
    file_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Return the row attributes written when registering ``patient``."""

    data: Dict[str, Any] = {LEGACY_USER_ATTRIBUTE: user_id}
    data.update(patient)
    data.pop("userId", None)
    data.pop("identificationDocument", None)

    gender = data.get("gender")
    if isinstance(gender, str):
        data["gender"] = gender.lower()

    # Only the short file id is stored; some schemas cap the URL attribute length.
    if file_id:
        data["identificationDocumentId"] = file_id
        data["identificationDocumentUrl"] = file_id
    return data


def register_patient(
    connection: Connection,
    user_id: str,
    patient: Mapping[str, Any],
    identification_document: Optional[IdentificationDocument] = None,
    *,
    on_change: Optional[ChangeListener] = None,
) -> Dict[str, Any]:
    """Upload the optional identification document and create the patient row."""

    user_id = validate_identifier(user_id, "user_id")
    file_id: Optional[str] = None
    if identification_document is not None:
        try:
            stored = connection.storage.create_file(
                connection.settings.bucket_id,
                unique_id(),
                identification_document.content,
                identification_document.filename,
            )
        except StoreAPIError as exc:
            raise RecordCreationError(
                f"Could not upload identification document for user {user_id}"
            ) from exc
        file_id = stored.get("$id")

    data = build_patient_data(user_id, patient, file_id)
    return create_record(
        connection,
        connection.settings.patient_collection_id,
        user_id,
        data,
        on_change=on_change,
    )


def get_patient_by_user(connection: Connection, user_id: str) -> Optional[Dict[str, Any]]:
    """Return the patient owned by ``user_id`` under either key scheme, or ``None``."""

    user_id = validate_identifier(user_id, "user_id")
    table_id = connection.settings.patient_collection_id

    try:
        return connection.tables.get_row(table_id, user_id)
    except StoreAPIError as exc:
        if exc.kind is not ErrorKind.NOT_FOUND:
            raise RecordRetrievalError(f"Could not retrieve patient for user {user_id}") from exc

    logger.debug("No patient keyed by user %s; trying the %s attribute", user_id, LEGACY_USER_ATTRIBUTE)
    try:
        result = connection.tables.list_rows(
            table_id, [Query.equal(LEGACY_USER_ATTRIBUTE, [user_id]), Query.limit(1)]
        )
    except StoreAPIError as exc:
        if exc.kind is ErrorKind.ATTRIBUTE_NOT_FOUND and exc.attribute in LEGACY_USER_ATTRIBUTE_ALIASES:
            return None
        raise RecordRetrievalError(f"Could not retrieve patient for user {user_id}") from exc

    rows = result.get("rows") or []
    return rows[0] if rows else None


__all__ = [
    "IdentificationDocument",
    "LEGACY_USER_ATTRIBUTE",
    "build_patient_data",
    "create_user",
    "get_patient_by_user",
    "get_user",
    "identification_document_url",
    "register_patient",
]
