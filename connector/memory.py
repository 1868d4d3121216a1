"""In-memory simulators of the store services.

These mirror the REST clients closely enough to exercise the schema
compatibility paths: collections may declare a fixed attribute set, in which
case writes with other attributes and queries on missing attributes fail the
same way the real store does. Every call is recorded in ``calls``.
"""
from __future__ import annotations

import copy
import itertools
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .appwrite_client import StoreAPIError, classify_error
from .config import Connection, StoreSettings

DEFAULT_LIST_LIMIT = 25
_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _error(code: int, message: str) -> StoreAPIError:
    kind, attribute = classify_error(code, message)
    return StoreAPIError(message, kind=kind, code=code, attribute=attribute)


class InMemoryTables:
    """Row storage keyed by table id with optional per-table schemas."""

    def __init__(self, schemas: Optional[Mapping[str, Optional[Iterable[str]]]] = None) -> None:
        self._schemas: Dict[str, Optional[Set[str]]] = {
            table_id: (set(attributes) if attributes is not None else None)
            for table_id, attributes in (schemas or {}).items()
        }
        self._rows: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._clock = itertools.count()
        self.calls: List[Tuple[str, str, Any]] = []

    def _timestamp(self) -> str:
        moment = _EPOCH + timedelta(seconds=next(self._clock))
        return moment.isoformat(timespec="milliseconds")

    def _check_attributes(self, table_id: str, data: Mapping[str, Any]) -> None:
        schema = self._schemas.get(table_id)
        if schema is None:
            return
        for name in data:
            if name not in schema:
                raise _error(400, f'Invalid document structure: Unknown attribute: "{name}"')

    def _table(self, table_id: str) -> Dict[str, Dict[str, Any]]:
        return self._rows.setdefault(table_id, {})

    def create_row(self, table_id: str, row_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        self.calls.append(("create_row", table_id, dict(data)))
        table = self._table(table_id)
        if row_id in table:
            raise _error(409, "Row with the requested ID already exists.")
        self._check_attributes(table_id, data)
        now = self._timestamp()
        row = {**copy.deepcopy(dict(data)), "$id": row_id, "$createdAt": now, "$updatedAt": now}
        table[row_id] = row
        return copy.deepcopy(row)

    def get_row(self, table_id: str, row_id: str) -> Dict[str, Any]:
        self.calls.append(("get_row", table_id, row_id))
        row = self._table(table_id).get(row_id)
        if row is None:
            raise _error(404, "Row with the requested ID could not be found.")
        return copy.deepcopy(row)

    def update_row(self, table_id: str, row_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        self.calls.append(("update_row", table_id, dict(data)))
        row = self._table(table_id).get(row_id)
        if row is None:
            raise _error(404, "Row with the requested ID could not be found.")
        self._check_attributes(table_id, data)
        row.update(copy.deepcopy(dict(data)))
        row["$updatedAt"] = self._timestamp()
        return copy.deepcopy(row)

    def list_rows(self, table_id: str, queries: Iterable[str] = ()) -> Dict[str, Any]:
        queries = list(queries)
        self.calls.append(("list_rows", table_id, queries))
        schema = self._schemas.get(table_id)
        rows = list(self._table(table_id).values())
        order: Optional[str] = None
        limit = DEFAULT_LIST_LIMIT
        cursor: Optional[str] = None

        for raw in queries:
            query = json.loads(raw)
            method = query["method"]
            attribute = query.get("attribute")
            values = query.get("values") or []
            if attribute and not attribute.startswith("$") and schema is not None and attribute not in schema:
                raise _error(400, f"Invalid query: Attribute not found in schema: {attribute}")
            if method == "equal":
                rows = [row for row in rows if row.get(attribute) in values]
            elif method == "orderDesc":
                order = attribute
            elif method == "limit":
                limit = int(values[0])
            elif method == "cursorAfter":
                cursor = str(values[0])
            else:
                raise _error(400, f"Invalid query method: {method}")

        if order is not None:
            rows = sorted(rows, key=lambda row: str(row.get(order) or ""), reverse=True)
        total = len(rows)
        if cursor is not None:
            positions = [index for index, row in enumerate(rows) if row["$id"] == cursor]
            if not positions:
                raise _error(400, f'Invalid query: Document "{cursor}" for the "cursorAfter" value not found.')
            rows = rows[positions[0] + 1 :]
        page = rows[:limit]
        return {"total": total, "rows": [copy.deepcopy(row) for row in page]}


class InMemoryUsers:
    def __init__(self) -> None:
        self._users: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, Any]] = []

    def create(self, user_id: str, *, email: Optional[str] = None, phone: Optional[str] = None, name: Optional[str] = None) -> Dict[str, Any]:
        self.calls.append(("create", email))
        if user_id in self._users or any(email and user.get("email") == email for user in self._users.values()):
            raise _error(409, "A user with the same id, email, or phone already exists in this project.")
        user = {"$id": user_id, "email": email, "phone": phone, "name": name}
        self._users[user_id] = user
        return dict(user)

    def get(self, user_id: str) -> Dict[str, Any]:
        self.calls.append(("get", user_id))
        user = self._users.get(user_id)
        if user is None:
            raise _error(404, "User with the requested ID could not be found.")
        return dict(user)

    def list(self, queries: Iterable[str] = ()) -> Dict[str, Any]:
        queries = [json.loads(raw) for raw in queries]
        self.calls.append(("list", queries))
        users = list(self._users.values())
        for query in queries:
            if query["method"] == "equal":
                users = [user for user in users if user.get(query["attribute"]) in query["values"]]
        return {"total": len(users), "users": [dict(user) for user in users]}


class InMemoryMessaging:
    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    def create_sms(self, message_id: str, content: str, *, topics: Sequence[str] = (), users: Sequence[str] = ()) -> Dict[str, Any]:
        message = {
            "$id": message_id,
            "content": content,
            "topics": list(topics),
            "users": list(users),
            "status": "processing",
        }
        self.sent.append(message)
        return dict(message)


class InMemoryStorage:
    def __init__(self) -> None:
        self.files: Dict[Tuple[str, str], bytes] = {}

    def create_file(self, bucket_id: str, file_id: str, content: bytes, filename: str) -> Dict[str, Any]:
        self.files[(bucket_id, file_id)] = content
        return {"$id": file_id, "bucketId": bucket_id, "name": filename, "sizeOriginal": len(content)}


def local_settings(**overrides: Any) -> StoreSettings:
    """Settings for in-memory use; no value is ever sent over the network."""

    values: Dict[str, Any] = {
        "endpoint": "http://localhost/v1",
        "project_id": "local",
        "api_key": "local-key",
        "database_id": "clinic",
        "patient_collection_id": "patients",
        "appointment_collection_id": "appointments",
        "bucket_id": "documents",
    }
    values.update(overrides)
    return StoreSettings(**values)


def in_memory_connection(
    settings: Optional[StoreSettings] = None,
    *,
    patient_attributes: Optional[Iterable[str]] = None,
    appointment_attributes: Optional[Iterable[str]] = None,
) -> Connection:
    """Build a ``Connection`` backed entirely by the in-memory simulators.

    ``None`` attribute sets make the collection schemaless.
    """

    settings = settings or local_settings()
    tables = InMemoryTables(
        {
            settings.patient_collection_id: patient_attributes,
            settings.appointment_collection_id: appointment_attributes,
        }
    )
    return Connection(
        settings=settings,
        tables=tables,
        users=InMemoryUsers(),
        messaging=InMemoryMessaging(),
        storage=InMemoryStorage(),
    )
