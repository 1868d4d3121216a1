"""SMS notifications sent when an appointment is scheduled or cancelled."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from connector import Connection, StoreAPIError, unique_id

from agents.records import NotificationError

logger = logging.getLogger(__name__)

SENDER_NAME = "Salus Health Management System"
NOTIFICATION_KINDS = ("schedule", "cancel")


@dataclass(frozen=True)
class DeliveryReceipt:
    """Handle returned by the messaging service for one queued message."""

    message_id: str
    recipient_id: str
    status: Optional[str] = None
    raw_payload: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


def _parse_schedule(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Schedule must be an ISO 8601 timestamp, got {value!r}") from exc
    else:
        raise ValueError("Schedule must be a datetime or an ISO 8601 string")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def format_date_time(value: Union[str, datetime], time_zone: str = "UTC") -> str:
    """Render ``value`` in ``time_zone`` as e.g. ``Oct 17, 2026, 9:30 AM``."""

    try:
        zone = ZoneInfo(time_zone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown time zone: {time_zone!r}") from exc

    local = _parse_schedule(value).astimezone(zone)
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{local:%b} {local.day}, {local.year}, {hour}:{local:%M} {meridiem}"


def build_appointment_message(
    kind: str,
    schedule: Union[str, datetime],
    *,
    physician: Optional[str] = None,
    reason: Optional[str] = None,
    time_zone: str = "UTC",
) -> str:
    """Return the SMS text for a scheduled or cancelled appointment."""

    if kind not in NOTIFICATION_KINDS:
        raise ValueError(f"kind must be one of {NOTIFICATION_KINDS}, got {kind!r}")

    when = format_date_time(schedule, time_zone)
    if kind == "schedule":
        body = f"Your appointment is confirmed for {when} with Dr. {physician or 'your physician'}"
    else:
        body = (
            f"We regret to inform that your appointment for {when} is cancelled. "
            f"Reason: {reason or 'not specified'}"
        )
    return f"Greetings from {SENDER_NAME}. {body}."


def notify(connection: Connection, user_id: str, message: str) -> DeliveryReceipt:
    """Queue one SMS for ``user_id`` and nobody else."""

    if not isinstance(user_id, str) or not user_id.strip():
        raise ValueError("user_id must be a non-empty string")
    if not message:
        raise ValueError("message must be a non-empty string")

    message_id = unique_id()
    try:
        payload = connection.messaging.create_sms(message_id, message, topics=[], users=[user_id])
    except StoreAPIError as exc:
        raise NotificationError(f"Could not send SMS to user {user_id}") from exc

    logger.info("Queued SMS %s for user %s", message_id, user_id)
    return DeliveryReceipt(
        message_id=str(payload.get("$id") or message_id),
        recipient_id=user_id,
        status=payload.get("status"),
        raw_payload=dict(payload),
    )


__all__ = [
    "DeliveryReceipt",
    "NOTIFICATION_KINDS",
    "build_appointment_message",
    "format_date_time",
    "notify",
]
