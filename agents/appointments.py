"""Appointment agent providing booking, scheduling and the recent listing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from connector import Connection, ErrorKind, Query, StoreAPIError, unique_id

from agents.notifications import (
    NOTIFICATION_KINDS,
    DeliveryReceipt,
    build_appointment_message,
    notify,
)
from agents.records import (
    ChangeListener,
    NotificationError,
    RecordRetrievalError,
    RecordUpdateError,
    create_record,
    notify_change,
    validate_identifier,
)

logger = logging.getLogger(__name__)

APPOINTMENT_STATUSES = ("scheduled", "pending", "cancelled")
PAGE_SIZE = 100
# Upper bound on values in a single equals-any-of filter.
MAX_FILTER_VALUES = 100


@dataclass(frozen=True)
class PatientIdentifier:
    """An appointment's patient given as a bare row id."""

    patient_id: str


@dataclass(frozen=True)
class ExpandedPatient:
    """An appointment's patient given as an embedded row."""

    document: Mapping[str, Any]

    @property
    def patient_id(self) -> str:
        return self.document["$id"]


PatientReference = Union[PatientIdentifier, ExpandedPatient]


def resolve_patient_reference(value: Any) -> Optional[PatientReference]:
    """Classify the ``patient`` field of an appointment; ``None`` if unusable."""

    if isinstance(value, str):
        return PatientIdentifier(value) if value else None
    if isinstance(value, Mapping):
        patient_id = value.get("$id")
        if isinstance(patient_id, str) and patient_id:
            return ExpandedPatient(value)
    return None


def patient_id_of(appointment: Mapping[str, Any]) -> Optional[str]:
    reference = resolve_patient_reference(appointment.get("patient"))
    return reference.patient_id if reference is not None else None


@dataclass
class RecentAppointments:
    """Appointments, newest first, with their patients joined in and status counts."""

    total: int = 0
    scheduled_count: int = 0
    pending_count: int = 0
    cancelled_count: int = 0
    items: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalCount": self.total,
            "scheduledCount": self.scheduled_count,
            "pendingCount": self.pending_count,
            "cancelledCount": self.cancelled_count,
            "documents": self.items,
        }


@dataclass
class AppointmentUpdate:
    """Outcome of an update: the stored row plus the separate notification result."""

    appointment: Dict[str, Any]
    receipt: Optional[DeliveryReceipt] = None
    notification_error: Optional[str] = None

    @property
    def notified(self) -> bool:
        return self.receipt is not None


def _validate_status(data: Mapping[str, Any]) -> None:
    if "status" in data and data["status"] not in APPOINTMENT_STATUSES:
        raise ValueError(
            f"status must be one of {APPOINTMENT_STATUSES}, got {data['status']!r}"
        )


def create_appointment(
    connection: Connection,
    appointment: Mapping[str, Any],
    *,
    on_change: Optional[ChangeListener] = None,
) -> Dict[str, Any]:
    """Book an appointment.

    A string ``patient`` is mirrored into ``patientId`` for schemas that
    require it; schemas without that attribute drop it on retry.
    """

    _validate_status(appointment)
    data = dict(appointment)
    if isinstance(data.get("patient"), str):
        data["patientId"] = data["patient"]

    return create_record(
        connection,
        connection.settings.appointment_collection_id,
        unique_id(),
        data,
        on_change=on_change,
    )


def get_appointment(connection: Connection, appointment_id: str) -> Optional[Dict[str, Any]]:
    appointment_id = validate_identifier(appointment_id, "appointment_id")
    try:
        return connection.tables.get_row(connection.settings.appointment_collection_id, appointment_id)
    except StoreAPIError as exc:
        if exc.kind is ErrorKind.NOT_FOUND:
            return None
        raise RecordRetrievalError(f"Could not retrieve appointment {appointment_id}") from exc


def _list_all_appointments(connection: Connection) -> List[Dict[str, Any]]:
    table_id = connection.settings.appointment_collection_id
    rows: List[Dict[str, Any]] = []
    seen = set()
    cursor: Optional[str] = None
    while True:
        queries = [Query.order_desc("$createdAt"), Query.limit(PAGE_SIZE)]
        if cursor is not None:
            queries.append(Query.cursor_after(cursor))
        batch = connection.tables.list_rows(table_id, queries).get("rows") or []
        for row in batch:
            if row["$id"] not in seen:
                seen.add(row["$id"])
                rows.append(row)
        if len(batch) < PAGE_SIZE:
            return rows
        cursor = batch[-1]["$id"]


def _unique_patient_ids(appointments: Iterable[Mapping[str, Any]]) -> List[str]:
    seen = set()
    patient_ids: List[str] = []
    for appointment in appointments:
        patient_id = patient_id_of(appointment)
        if patient_id and patient_id not in seen:
            seen.add(patient_id)
            patient_ids.append(patient_id)
    return patient_ids


def _fetch_patients(connection: Connection, patient_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    table_id = connection.settings.patient_collection_id
    patients: Dict[str, Dict[str, Any]] = {}
    for start in range(0, len(patient_ids), MAX_FILTER_VALUES):
        chunk = patient_ids[start : start + MAX_FILTER_VALUES]
        result = connection.tables.list_rows(table_id, [Query.equal("$id", chunk), Query.limit(len(chunk))])
        for patient in result.get("rows") or []:
            patients[patient["$id"]] = patient
    return patients


def count_by_status(appointments: Iterable[Mapping[str, Any]]) -> Dict[str, int]:
    """Count appointments per known status; other values are skipped."""

    counts = {status: 0 for status in APPOINTMENT_STATUSES}
    for appointment in appointments:
        status = appointment.get("status")
        if status in counts:
            counts[status] += 1
    return counts


def list_recent_appointments(connection: Connection) -> RecentAppointments:
    """List every appointment, newest first, with patients joined in.

    Appointments whose patient cannot be resolved keep their original
    ``patient`` value and stay in the listing.
    """

    try:
        appointments = _list_all_appointments(connection)
        patient_ids = _unique_patient_ids(appointments)
        patients = _fetch_patients(connection, patient_ids) if patient_ids else {}
    except StoreAPIError as exc:
        raise RecordRetrievalError("Could not retrieve the recent appointments") from exc

    items: List[Dict[str, Any]] = []
    for appointment in appointments:
        patient_id = patient_id_of(appointment)
        hydrated = dict(appointment)
        if patient_id in patients:
            hydrated["patient"] = patients[patient_id]
        items.append(hydrated)

    unresolved = sum(1 for appointment in appointments if patient_id_of(appointment) not in patients)
    if unresolved:
        logger.warning("%d appointment(s) reference a patient that could not be resolved", unresolved)

    counts = count_by_status(appointments)
    return RecentAppointments(
        total=len(appointments),
        scheduled_count=counts["scheduled"],
        pending_count=counts["pending"],
        cancelled_count=counts["cancelled"],
        items=items,
    )


def update_appointment(
    connection: Connection,
    appointment_id: str,
    user_id: str,
    appointment: Mapping[str, Any],
    kind: str,
    *,
    time_zone: str = "UTC",
    on_change: Optional[ChangeListener] = None,
) -> AppointmentUpdate:
    """Update an appointment, then notify the patient.

    The update and the notification are independent steps: a failed
    notification is reported on the result and never undoes the update.
    """

    appointment_id = validate_identifier(appointment_id, "appointment_id")
    user_id = validate_identifier(user_id, "user_id")
    if kind not in NOTIFICATION_KINDS:
        raise ValueError(f"kind must be one of {NOTIFICATION_KINDS}, got {kind!r}")
    _validate_status(appointment)

    table_id = connection.settings.appointment_collection_id
    try:
        updated = connection.tables.update_row(table_id, appointment_id, dict(appointment))
    except StoreAPIError as exc:
        logger.error("Failed to update appointment %s: %s", appointment_id, exc)
        raise RecordUpdateError(f"Could not update appointment {appointment_id}") from exc

    logger.info("Updated appointment %s (%s)", appointment_id, kind)
    notify_change(on_change, table_id)

    result = AppointmentUpdate(appointment=updated)
    try:
        message = build_appointment_message(
            kind,
            appointment.get("schedule") or updated.get("schedule"),
            physician=appointment.get("primaryPhysician") or updated.get("primaryPhysician"),
            reason=appointment.get("cancellationReason") or updated.get("cancellationReason"),
            time_zone=time_zone,
        )
        result.receipt = notify(connection, user_id, message)
    except (NotificationError, ValueError) as exc:
        logger.warning("Appointment %s updated but the notification failed: %s", appointment_id, exc)
        result.notification_error = str(exc)
    return result


__all__ = [
    "APPOINTMENT_STATUSES",
    "AppointmentUpdate",
    "ExpandedPatient",
    "PatientIdentifier",
    "PatientReference",
    "RecentAppointments",
    "count_by_status",
    "create_appointment",
    "get_appointment",
    "list_recent_appointments",
    "patient_id_of",
    "resolve_patient_reference",
    "update_appointment",
]
