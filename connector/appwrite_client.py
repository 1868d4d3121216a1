"""Appwrite store client utilities.

This module provides clients for the document store ("TablesDB"), user
identity, messaging and file storage endpoints of an Appwrite-style backend.
The clients share HTTP session handling with retries and translate error
responses into structured ``StoreAPIError`` instances, so callers branch on an
``ErrorKind`` instead of parsing messages.
"""
from __future__ import annotations

import enum
import json
import logging
import re
import uuid
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

__all__ = [
    "ErrorKind",
    "StoreClientError",
    "StoreAPIError",
    "Query",
    "unique_id",
    "classify_error",
    "build_session",
    "TablesClient",
    "UsersClient",
    "MessagingClient",
    "StorageClient",
]


# Hosting applications configure handlers; this module only emits records.
logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_FACTOR = 0.5

# Creates and updates are never replayed by the transport layer.
IDEMPOTENT_METHODS = ("GET", "HEAD", "OPTIONS")

_UNKNOWN_ATTRIBUTE_RE = re.compile(r'Unknown attribute:\s+"([^"]+)"')
_ATTRIBUTE_NOT_FOUND_RE = re.compile(r"Attribute not found in schema:\s*\"?([A-Za-z0-9_$-]+)")


class ErrorKind(str, enum.Enum):
    """Structured classification of a failed store call."""

    UNKNOWN_ATTRIBUTE = "unknown_attribute"
    ATTRIBUTE_NOT_FOUND = "attribute_not_found"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


class StoreClientError(RuntimeError):
    """Base exception for store client errors."""


class StoreAPIError(StoreClientError):
    """Raised when the store returns an error response or cannot be reached."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        code: Optional[int] = None,
        error_type: Optional[str] = None,
        attribute: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.code = code
        self.error_type = error_type
        self.attribute = attribute

    def __repr__(self) -> str:
        return (
            f"StoreAPIError(kind={self.kind.value!r}, code={self.code!r}, "
            f"attribute={self.attribute!r}, message={self.message!r})"
        )


def classify_error(code: Optional[int], message: str) -> Tuple[ErrorKind, Optional[str]]:
    """Derive the error kind and offending attribute from a store error.

    This is the only place where error message text is inspected.
    """

    message = message or ""
    match = _UNKNOWN_ATTRIBUTE_RE.search(message)
    if match:
        return ErrorKind.UNKNOWN_ATTRIBUTE, match.group(1)
    match = _ATTRIBUTE_NOT_FOUND_RE.search(message)
    if match:
        return ErrorKind.ATTRIBUTE_NOT_FOUND, match.group(1)
    if code == 404:
        return ErrorKind.NOT_FOUND, None
    if code == 409:
        return ErrorKind.CONFLICT, None
    return ErrorKind.UNKNOWN, None


def unique_id() -> str:
    """Return a new identifier valid as a row, user, file or message id."""

    return uuid.uuid4().hex


class Query:
    """Builders for the JSON query strings accepted by list endpoints."""

    @staticmethod
    def _encode(method: str, attribute: Optional[str] = None, values: Optional[Sequence[Any]] = None) -> str:
        payload: Dict[str, Any] = {"method": method}
        if attribute is not None:
            payload["attribute"] = attribute
        if values is not None:
            payload["values"] = list(values)
        return json.dumps(payload, separators=(",", ":"))

    @classmethod
    def equal(cls, attribute: str, value: Union[Any, Sequence[Any]]) -> str:
        if isinstance(value, (list, tuple, set, frozenset)):
            values = list(value)
        else:
            values = [value]
        return cls._encode("equal", attribute, values)

    @classmethod
    def order_desc(cls, attribute: str) -> str:
        return cls._encode("orderDesc", attribute)

    @classmethod
    def limit(cls, count: int) -> str:
        return cls._encode("limit", values=[int(count)])

    @classmethod
    def cursor_after(cls, row_id: str) -> str:
        return cls._encode("cursorAfter", values=[row_id])


def build_session(*, max_retries: int = DEFAULT_MAX_RETRIES, backoff_factor: float = DEFAULT_BACKOFF_FACTOR) -> requests.Session:
    """Create a session that retries idempotent requests on transient failures."""

    session = requests.Session()
    retry_strategy = Retry(
        total=max_retries,
        read=max_retries,
        connect=max_retries,
        status=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=IDEMPOTENT_METHODS,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class AppwriteBaseClient:
    """Shared functionality for the store's REST clients."""

    def __init__(
        self,
        *,
        endpoint: str,
        project_id: str,
        api_key: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not endpoint:
            raise ValueError("endpoint must be provided")
        if not project_id or not api_key:
            raise ValueError("project_id and api_key must be provided")

        self.endpoint = endpoint.rstrip("/")
        self.project_id = project_id
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or build_session()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json_payload: Optional[Mapping[str, Any]] = None,
        data: Optional[Mapping[str, Any]] = None,
        files: Optional[Mapping[str, Any]] = None,
        expected_status: Union[int, Tuple[int, ...]] = (200,),
    ) -> Dict[str, Any]:
        if not path:
            raise ValueError("path must be provided")
        if isinstance(expected_status, int):
            expected_status = (expected_status,)

        url = f"{self.endpoint}/{path.lstrip('/')}"
        headers = {
            "X-Appwrite-Project": self.project_id,
            "X-Appwrite-Key": self.api_key,
            "Accept": "application/json",
        }

        logger.debug("%s %s", method.upper(), url)
        try:
            response = self._session.request(
                method=method.upper(),
                url=url,
                params=params,
                json=json_payload,
                data=data,
                files=files,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Request to store failed: %s %s: %s", method.upper(), url, exc)
            raise StoreAPIError(
                f"Failed to execute request to store: {exc}", kind=ErrorKind.TRANSPORT
            ) from exc

        if response.status_code not in expected_status:
            raise self._error_from_response(response)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise StoreAPIError("Store response was not valid JSON", code=response.status_code) from exc

    @staticmethod
    def _error_from_response(response: Response) -> StoreAPIError:
        message = ""
        error_type = None
        code: Optional[int] = response.status_code
        content_type = response.headers.get("Content-Type", "")
        if "json" in content_type:
            try:
                parsed = response.json()
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                message = str(parsed.get("message") or "")
                error_type = parsed.get("type")
                if isinstance(parsed.get("code"), int) and parsed["code"]:
                    code = parsed["code"]
        if not message:
            message = response.text[:2048]

        kind, attribute = classify_error(code, message)
        # Not-found and schema errors are routine here; the adapters decide what they mean.
        level = logging.DEBUG if kind in (ErrorKind.NOT_FOUND, ErrorKind.UNKNOWN_ATTRIBUTE, ErrorKind.ATTRIBUTE_NOT_FOUND) else logging.ERROR
        logger.log(level, "Store error response: status=%s kind=%s body=%s", code, kind.value, message)
        return StoreAPIError(message, kind=kind, code=code, error_type=error_type, attribute=attribute)


class TablesClient(AppwriteBaseClient):
    """Client for the row operations of the store's tables API."""

    def __init__(self, *, database_id: str, **kwargs: Any) -> None:
        if not database_id:
            raise ValueError("database_id must be provided")
        super().__init__(**kwargs)
        self.database_id = database_id

    def _rows_path(self, table_id: str, row_id: Optional[str] = None) -> str:
        if not table_id:
            raise ValueError("table_id must be provided")
        path = f"tablesdb/{self.database_id}/tables/{table_id}/rows"
        if row_id is not None:
            if not row_id:
                raise ValueError("row_id must be provided")
            path = f"{path}/{row_id}"
        return path

    def create_row(self, table_id: str, row_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Create a row with the given id and attribute values."""

        if not row_id:
            raise ValueError("row_id must be provided")
        payload = {"rowId": row_id, "data": dict(data)}
        return self._request("POST", self._rows_path(table_id), json_payload=payload, expected_status=(200, 201))

    def get_row(self, table_id: str, row_id: str) -> Dict[str, Any]:
        return self._request("GET", self._rows_path(table_id, row_id))

    def update_row(self, table_id: str, row_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        return self._request("PATCH", self._rows_path(table_id, row_id), json_payload={"data": dict(data)})

    def list_rows(self, table_id: str, queries: Iterable[str] = ()) -> Dict[str, Any]:
        """List rows matching ``queries``.

        Returns the raw ``{"total": ..., "rows": [...]}`` payload.
        """

        params = {"queries[]": list(queries)}
        payload = self._request("GET", self._rows_path(table_id), params=params)
        payload.setdefault("rows", [])
        payload.setdefault("total", len(payload["rows"]))
        return payload


class UsersClient(AppwriteBaseClient):
    """Client for the user identity endpoints."""

    def create(
        self,
        user_id: str,
        *,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"userId": user_id}
        if email:
            payload["email"] = email
        if phone:
            payload["phone"] = phone
        if name:
            payload["name"] = name
        return self._request("POST", "users", json_payload=payload, expected_status=(200, 201))

    def get(self, user_id: str) -> Dict[str, Any]:
        if not user_id:
            raise ValueError("user_id must be provided")
        return self._request("GET", f"users/{user_id}")

    def list(self, queries: Iterable[str] = ()) -> Dict[str, Any]:
        payload = self._request("GET", "users", params={"queries[]": list(queries)})
        payload.setdefault("users", [])
        return payload


class MessagingClient(AppwriteBaseClient):
    """Client for the messaging endpoints."""

    def create_sms(
        self,
        message_id: str,
        content: str,
        *,
        topics: Sequence[str] = (),
        users: Sequence[str] = (),
    ) -> Dict[str, Any]:
        if not content:
            raise ValueError("content must be a non-empty string")
        payload = {
            "messageId": message_id,
            "content": content,
            "topics": list(topics),
            "users": list(users),
        }
        return self._request("POST", "messaging/messages/sms", json_payload=payload, expected_status=(200, 201))


class StorageClient(AppwriteBaseClient):
    """Client for the file storage endpoints."""

    def create_file(self, bucket_id: str, file_id: str, content: bytes, filename: str) -> Dict[str, Any]:
        if not bucket_id:
            raise ValueError("bucket_id must be provided")
        if not filename:
            raise ValueError("filename must be provided")
        return self._request(
            "POST",
            f"storage/buckets/{bucket_id}/files",
            data={"fileId": file_id},
            files={"file": (filename, content)},
            expected_status=(200, 201),
        )
