import io
import json
import os
import unittest
from contextlib import redirect_stdout
from unittest.mock import patch

from connector import ErrorKind, StoreAPIError
from connector.memory import in_memory_connection
from orchestrator import main as cli


class CommandLineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.connection = in_memory_connection()
        settings = self.connection.settings
        self.connection.tables.create_row(settings.patient_collection_id, "u1", {"name": "Ada"})
        self.connection.tables.create_row(settings.appointment_collection_id, "a1", {"patient": "u1", "status": "scheduled"})

    def _run(self, argv) -> tuple:
        output = io.StringIO()
        with redirect_stdout(output):
            code = cli.main(argv, connection=self.connection)
        return code, output.getvalue()

    def test_list_appointments(self) -> None:
        code, output = self._run(["list-appointments"])

        self.assertEqual(code, 0)
        payload = json.loads(output)
        self.assertEqual(payload["totalCount"], 1)
        self.assertEqual(payload["documents"][0]["patient"]["name"], "Ada")

    def test_get_patient(self) -> None:
        code, output = self._run(["get-patient", "u1"])

        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output)["name"], "Ada")

    def test_get_missing_appointment_prints_null(self) -> None:
        code, output = self._run(["get-appointment", "missing"])

        self.assertEqual(code, 0)
        self.assertIsNone(json.loads(output))

    def test_identifier_is_required(self) -> None:
        with self.assertRaises(SystemExit):
            cli.parse_args(["get-patient"])

    def test_store_failure_exit_code(self) -> None:
        error = StoreAPIError("offline", kind=ErrorKind.TRANSPORT)
        with patch.object(self.connection.tables, "list_rows", side_effect=error):
            code, output = self._run(["list-appointments"])

        self.assertEqual(code, 1)
        self.assertEqual(output, "")

    def test_missing_configuration_exit_code(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(cli.main(["check-config"]), 2)


if __name__ == "__main__":
    unittest.main()
