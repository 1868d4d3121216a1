"""Agent package exposing the clinic record operations."""

from .appointments import (
    AppointmentUpdate,
    RecentAppointments,
    create_appointment,
    get_appointment,
    list_recent_appointments,
    update_appointment,
)
from .notifications import DeliveryReceipt, notify
from .patients import create_user, get_patient_by_user, get_user, register_patient
from .records import (
    NotificationError,
    RecordCreationError,
    RecordRetrievalError,
    RecordsError,
    RecordUpdateError,
    create_record,
)

__all__ = [
    "AppointmentUpdate",
    "DeliveryReceipt",
    "NotificationError",
    "RecentAppointments",
    "RecordCreationError",
    "RecordRetrievalError",
    "RecordUpdateError",
    "RecordsError",
    "create_appointment",
    "create_record",
    "create_user",
    "get_appointment",
    "get_patient_by_user",
    "get_user",
    "list_recent_appointments",
    "notify",
    "register_patient",
    "update_appointment",
]
