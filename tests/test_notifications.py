import unittest
from datetime import datetime
from unittest.mock import patch

from agents.notifications import build_appointment_message, format_date_time, notify
from agents.records import NotificationError
from connector import ErrorKind, StoreAPIError
from connector.memory import in_memory_connection


class FormatDateTimeTests(unittest.TestCase):
    def test_converts_to_time_zone(self) -> None:
        self.assertEqual(
            format_date_time("2026-10-17T14:30:00.000+00:00", "America/New_York"),
            "Oct 17, 2026, 10:30 AM",
        )

    def test_midnight_and_afternoon(self) -> None:
        self.assertEqual(format_date_time("2026-01-05T00:05:00Z"), "Jan 5, 2026, 12:05 AM")
        self.assertEqual(format_date_time("2026-01-05T13:00:00Z"), "Jan 5, 2026, 1:00 PM")

    def test_naive_datetime_is_utc(self) -> None:
        self.assertEqual(format_date_time(datetime(2026, 3, 2, 9, 0), "Europe/Berlin"), "Mar 2, 2026, 10:00 AM")

    def test_invalid_input(self) -> None:
        with self.assertRaises(ValueError):
            format_date_time("2026-01-05T13:00:00Z", "Mars/Olympus_Mons")
        with self.assertRaises(ValueError):
            format_date_time("tomorrow")
        with self.assertRaises(ValueError):
            format_date_time(None)


class BuildMessageTests(unittest.TestCase):
    def test_schedule_message(self) -> None:
        message = build_appointment_message("schedule", "2026-10-17T14:30:00Z", physician="John Green")

        self.assertEqual(
            message,
            "Greetings from Salus Health Management System. "
            "Your appointment is confirmed for Oct 17, 2026, 2:30 PM with Dr. John Green.",
        )

    def test_cancel_message(self) -> None:
        message = build_appointment_message("cancel", "2026-10-17T14:30:00Z", reason="Clinic closed")

        self.assertEqual(
            message,
            "Greetings from Salus Health Management System. "
            "We regret to inform that your appointment for Oct 17, 2026, 2:30 PM is cancelled. "
            "Reason: Clinic closed.",
        )

    def test_unknown_kind(self) -> None:
        with self.assertRaises(ValueError):
            build_appointment_message("reschedule", "2026-10-17T14:30:00Z")


class NotifyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.connection = in_memory_connection()

    def test_sends_to_single_user(self) -> None:
        receipt = notify(self.connection, "u1", "Hello")

        sent = self.connection.messaging.sent
        self.assertEqual(len(sent), 1)
        self.assertEqual(sent[0]["users"], ["u1"])
        self.assertEqual(sent[0]["topics"], [])
        self.assertEqual(receipt.message_id, sent[0]["$id"])
        self.assertEqual(receipt.recipient_id, "u1")
        self.assertEqual(receipt.status, "processing")

    def test_message_ids_are_unique(self) -> None:
        first = notify(self.connection, "u1", "Hello")
        second = notify(self.connection, "u1", "Hello again")

        self.assertNotEqual(first.message_id, second.message_id)

    def test_delivery_failure_is_typed(self) -> None:
        error = StoreAPIError("provider unavailable", kind=ErrorKind.UNKNOWN, code=503)
        with patch.object(self.connection.messaging, "create_sms", side_effect=error):
            with self.assertRaises(NotificationError):
                notify(self.connection, "u1", "Hello")

    def test_requires_recipient_and_content(self) -> None:
        with self.assertRaises(ValueError):
            notify(self.connection, "", "Hello")
        with self.assertRaises(ValueError):
            notify(self.connection, "u1", "")


if __name__ == "__main__":
    unittest.main()
