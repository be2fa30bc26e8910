from __future__ import annotations

import json
from urllib.error import HTTPError
from urllib.parse import quote
from urllib.request import Request, urlopen

from .store_base import RemoteStoreBase, RemoteStoreError


def encode_value(value: object) -> dict:
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(item) for item in value]}}
    return {"stringValue": str(value)}


def encode_fields(doc: dict) -> dict:
    return {str(key): encode_value(val) for key, val in doc.items()}


def decode_value(value: dict) -> object:
    if not isinstance(value, dict):
        return None
    if "integerValue" in value:
        try:
            return int(value["integerValue"])
        except (TypeError, ValueError):
            return 0
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return value["timestampValue"]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "arrayValue" in value:
        return [decode_value(item) for item in value["arrayValue"].get("values", [])]
    return None


def decode_fields(fields: dict) -> dict:
    if not isinstance(fields, dict):
        return {}
    return {key: decode_value(val) for key, val in fields.items()}


def decode_document(document: dict) -> dict:
    doc = decode_fields(document.get("fields", {}))
    name = str(document.get("name", ""))
    if name and "id" not in doc:
        doc["id"] = name.rsplit("/", 1)[-1]
    return doc


def _query_documents(rows: list) -> list[dict]:
    # runQuery answers with one row per match plus bare readTime rows.
    return [
        decode_document(row["document"])
        for row in rows
        if isinstance(row, dict) and isinstance(row.get("document"), dict)
    ]


class FirestoreRestStore(RemoteStoreBase):
    """Firestore REST v1 adapter authenticated with a bearer ID token."""

    def __init__(self, project: str, token: str, database: str = "(default)", page_size: int = 300) -> None:
        self.project = project
        self.token = token
        self.database = database
        self.page_size = max(1, int(page_size))

    def _root(self) -> str:
        return f"projects/{self.project}/databases/{self.database}/documents"

    def _doc_name(self, *parts: str) -> str:
        return "/".join([self._root(), *(quote(str(p), safe="") for p in parts)])

    def _url(self, path: str) -> str:
        return f"https://firestore.googleapis.com/v1/{path}"

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.token}",
            "User-Agent": "studytrack-sync/0.1",
        }

    def _api_request(self, method: str, url: str, body: dict | None = None) -> tuple[int, dict | list]:
        if not self.token:
            raise RemoteStoreError("firestore auth_missing: no id token")
        data = None
        headers = self._headers()
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"

        req = Request(url=url, data=data, method=method, headers=headers)
        try:
            with urlopen(req, timeout=15) as resp:
                raw = resp.read().decode("utf-8")
                payload = json.loads(raw) if raw else {}
                return resp.status, payload
        except HTTPError as exc:
            raw = exc.read().decode("utf-8") if exc.fp else ""
            try:
                payload = json.loads(raw) if raw else {}
            except json.JSONDecodeError:
                payload = {}
            return exc.code, payload

    def write_session(self, user_id: str, record: dict) -> None:
        session_id = str(record.get("id", "")).strip()
        if not session_id:
            raise RemoteStoreError("firestore write failed: session without id")
        minutes = int(record.get("duration_minutes", 0))
        subject = str(record.get("subject", "")).replace("`", "")
        profile_fields: dict = {"id": user_id}
        if record.get("username"):
            profile_fields["username"] = record["username"]
            profile_fields["displayName"] = record["username"]

        body = {
            "writes": [
                {
                    "update": {
                        "name": self._doc_name("users", user_id, "sessions", session_id),
                        "fields": encode_fields(record),
                    },
                    "currentDocument": {"exists": False},
                },
                {
                    "update": {"name": self._doc_name("users", user_id), "fields": encode_fields(profile_fields)},
                    "updateMask": {"fieldPaths": sorted(profile_fields)},
                    "updateTransforms": [
                        {"fieldPath": f"studyTimes.`{subject}`", "increment": {"integerValue": str(minutes)}},
                        {"fieldPath": "totalStudyTime", "increment": {"integerValue": str(minutes)}},
                    ],
                },
            ]
        }
        status, _payload = self._api_request("POST", self._url(f"{self._root()}:commit"), body=body)
        if status == 409:
            # Session document already exists; the whole commit was rejected, so totals are untouched.
            return
        if status >= 400:
            raise RemoteStoreError(f"firestore commit failed: status={status}")

    def _list_collection(self, user_id: str, collection: str) -> list[dict]:
        base = self._url(self._doc_name("users", user_id, collection))
        docs: list[dict] = []
        page_token = ""
        while True:
            url = f"{base}?pageSize={self.page_size}"
            if page_token:
                url = f"{url}&pageToken={quote(page_token, safe='')}"
            status, payload = self._api_request("GET", url)
            if status == 404:
                return docs
            if status >= 400 or not isinstance(payload, dict):
                raise RemoteStoreError(f"firestore list failed collection={collection}: status={status}")
            for document in payload.get("documents", []):
                if isinstance(document, dict):
                    docs.append(decode_document(document))
            page_token = str(payload.get("nextPageToken", "") or "")
            if not page_token:
                return docs

    def list_sessions(self, user_id: str, day: str | None = None) -> list[dict]:
        if day is None:
            return self._list_collection(user_id, "sessions")
        body = {
            "structuredQuery": {
                "from": [{"collectionId": "sessions"}],
                "where": {
                    "fieldFilter": {
                        "field": {"fieldPath": "date"},
                        "op": "EQUAL",
                        "value": {"stringValue": day},
                    }
                },
            }
        }
        url = self._url(f"{self._doc_name('users', user_id)}:runQuery")
        status, payload = self._api_request("POST", url, body=body)
        if status == 404:
            return []
        if status >= 400 or not isinstance(payload, list):
            raise RemoteStoreError(f"firestore session query failed day={day}: status={status}")
        return _query_documents(payload)

    def get_profile(self, user_id: str) -> dict:
        status, payload = self._api_request("GET", self._url(self._doc_name("users", user_id)))
        if status == 404:
            return {}
        if status >= 400 or not isinstance(payload, dict):
            raise RemoteStoreError(f"firestore profile read failed: status={status}")
        return decode_document(payload)

    def put_document(self, user_id: str, collection: str, doc: dict) -> None:
        doc_id = str(doc.get("id", "")).strip()
        if not doc_id:
            raise RemoteStoreError(f"firestore write failed: {collection} document without id")
        url = self._url(self._doc_name("users", user_id, collection, doc_id))
        status, _payload = self._api_request("PATCH", url, body={"fields": encode_fields(doc)})
        if status >= 400:
            raise RemoteStoreError(f"firestore write failed collection={collection}: status={status}")

    def list_documents(self, user_id: str, collection: str) -> list[dict]:
        return self._list_collection(user_id, collection)

    def list_profiles(self, limit: int = 10) -> list[dict]:
        body = {
            "structuredQuery": {
                "from": [{"collectionId": "users"}],
                "orderBy": [{"field": {"fieldPath": "totalStudyTime"}, "direction": "DESCENDING"}],
                "limit": max(1, int(limit)),
            }
        }
        status, payload = self._api_request("POST", self._url(f"{self._root()}:runQuery"), body=body)
        if status >= 400 or not isinstance(payload, list):
            raise RemoteStoreError(f"firestore leaderboard query failed: status={status}")
        return _query_documents(payload)
