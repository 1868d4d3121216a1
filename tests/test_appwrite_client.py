import json
import unittest
from unittest.mock import MagicMock

import requests

from connector.appwrite_client import (
    IDEMPOTENT_METHODS,
    ErrorKind,
    MessagingClient,
    Query,
    StoreAPIError,
    TablesClient,
    UsersClient,
    build_session,
    classify_error,
)


def _response(status: int, payload=None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.encoding = "utf-8"
    if payload is None:
        response._content = b""
    else:
        response._content = json.dumps(payload).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    return response


class ClassifyErrorTests(unittest.TestCase):
    def test_unknown_attribute(self) -> None:
        kind, attribute = classify_error(400, 'Invalid document structure: Unknown attribute: "patientId"')
        self.assertIs(kind, ErrorKind.UNKNOWN_ATTRIBUTE)
        self.assertEqual(attribute, "patientId")

    def test_attribute_not_found(self) -> None:
        kind, attribute = classify_error(400, "Invalid query: Attribute not found in schema: userID")
        self.assertIs(kind, ErrorKind.ATTRIBUTE_NOT_FOUND)
        self.assertEqual(attribute, "userID")

    def test_status_codes(self) -> None:
        self.assertEqual(classify_error(404, "Row not found"), (ErrorKind.NOT_FOUND, None))
        self.assertEqual(classify_error(409, "Already exists"), (ErrorKind.CONFLICT, None))
        self.assertEqual(classify_error(500, "Server error"), (ErrorKind.UNKNOWN, None))


class QueryTests(unittest.TestCase):
    def test_equal_accepts_scalar_and_list(self) -> None:
        self.assertEqual(json.loads(Query.equal("email", "a@b.c")), {"method": "equal", "attribute": "email", "values": ["a@b.c"]})
        self.assertEqual(json.loads(Query.equal("$id", ["p1", "p2"]))["values"], ["p1", "p2"])

    def test_paging_and_ordering(self) -> None:
        self.assertEqual(json.loads(Query.order_desc("$createdAt")), {"method": "orderDesc", "attribute": "$createdAt"})
        self.assertEqual(json.loads(Query.limit(100)), {"method": "limit", "values": [100]})
        self.assertEqual(json.loads(Query.cursor_after("a100")), {"method": "cursorAfter", "values": ["a100"]})


class TablesClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = MagicMock(spec=requests.Session)
        self.client = TablesClient(
            endpoint="https://cloud.example.com/v1/",
            project_id="proj",
            api_key="secret",
            database_id="clinic",
            session=self.session,
        )

    def test_create_row_request(self) -> None:
        self.session.request.return_value = _response(201, {"$id": "a1", "status": "pending"})

        row = self.client.create_row("appointments", "a1", {"status": "pending"})

        self.assertEqual(row["$id"], "a1")
        kwargs = self.session.request.call_args.kwargs
        self.assertEqual(kwargs["method"], "POST")
        self.assertEqual(kwargs["url"], "https://cloud.example.com/v1/tablesdb/clinic/tables/appointments/rows")
        self.assertEqual(kwargs["json"], {"rowId": "a1", "data": {"status": "pending"}})
        self.assertEqual(kwargs["headers"]["X-Appwrite-Project"], "proj")
        self.assertEqual(kwargs["headers"]["X-Appwrite-Key"], "secret")

    def test_unknown_attribute_response_is_classified(self) -> None:
        self.session.request.return_value = _response(
            400,
            {"message": 'Invalid document structure: Unknown attribute: "patientId"', "code": 400, "type": "document_invalid_structure"},
        )

        with self.assertRaises(StoreAPIError) as ctx:
            self.client.create_row("appointments", "a1", {"patientId": "p1"})

        self.assertIs(ctx.exception.kind, ErrorKind.UNKNOWN_ATTRIBUTE)
        self.assertEqual(ctx.exception.attribute, "patientId")
        self.assertEqual(ctx.exception.code, 400)
        self.assertEqual(ctx.exception.error_type, "document_invalid_structure")

    def test_not_found_response(self) -> None:
        self.session.request.return_value = _response(404, {"message": "Row with the requested ID could not be found.", "code": 404})

        with self.assertRaises(StoreAPIError) as ctx:
            self.client.get_row("patients", "u1")

        self.assertIs(ctx.exception.kind, ErrorKind.NOT_FOUND)

    def test_network_failure_is_transport_error(self) -> None:
        self.session.request.side_effect = requests.ConnectionError("refused")

        with self.assertRaises(StoreAPIError) as ctx:
            self.client.get_row("patients", "u1")

        self.assertIs(ctx.exception.kind, ErrorKind.TRANSPORT)

    def test_list_rows_sends_queries(self) -> None:
        self.session.request.return_value = _response(200, {"total": 1, "rows": [{"$id": "p1"}]})
        queries = [Query.equal("$id", ["p1"]), Query.limit(1)]

        result = self.client.list_rows("patients", queries)

        self.assertEqual(result["rows"], [{"$id": "p1"}])
        kwargs = self.session.request.call_args.kwargs
        self.assertEqual(kwargs["method"], "GET")
        self.assertEqual(kwargs["params"], {"queries[]": queries})

    def test_update_row_uses_patch(self) -> None:
        self.session.request.return_value = _response(200, {"$id": "a1", "status": "scheduled"})

        self.client.update_row("appointments", "a1", {"status": "scheduled"})

        kwargs = self.session.request.call_args.kwargs
        self.assertEqual(kwargs["method"], "PATCH")
        self.assertTrue(kwargs["url"].endswith("/tables/appointments/rows/a1"))

    def test_rejects_missing_identifiers(self) -> None:
        with self.assertRaises(ValueError):
            self.client.create_row("appointments", "", {})
        with self.assertRaises(ValueError):
            self.client.get_row("", "a1")


class OtherClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = MagicMock(spec=requests.Session)
        self.common = {"endpoint": "https://cloud.example.com/v1", "project_id": "proj", "api_key": "secret", "session": self.session}

    def test_conflict_on_user_create(self) -> None:
        self.session.request.return_value = _response(409, {"message": "A user with the same email already exists.", "code": 409})

        with self.assertRaises(StoreAPIError) as ctx:
            UsersClient(**self.common).create("u1", email="ada@example.com")

        self.assertIs(ctx.exception.kind, ErrorKind.CONFLICT)

    def test_sms_payload(self) -> None:
        self.session.request.return_value = _response(201, {"$id": "m1", "status": "processing"})

        MessagingClient(**self.common).create_sms("m1", "Hello", users=["u1"])

        kwargs = self.session.request.call_args.kwargs
        self.assertEqual(kwargs["url"], "https://cloud.example.com/v1/messaging/messages/sms")
        self.assertEqual(kwargs["json"], {"messageId": "m1", "content": "Hello", "topics": [], "users": ["u1"]})


class SessionTests(unittest.TestCase):
    def test_only_idempotent_methods_are_retried(self) -> None:
        session = build_session(max_retries=2)

        retry = session.get_adapter("https://cloud.example.com").max_retries

        self.assertEqual(retry.total, 2)
        self.assertEqual(tuple(retry.allowed_methods), IDEMPOTENT_METHODS)
        self.assertNotIn("POST", retry.allowed_methods)
        self.assertNotIn("PATCH", retry.allowed_methods)


if __name__ == "__main__":
    unittest.main()
