from __future__ import annotations

from datetime import datetime
from typing import Iterable

from studytrack_app.core.records import parse_iso

TIMESTAMP_KEYS = ("lastModified", "last_modified", "created_at")


def modified_at(doc: dict) -> datetime | None:
    for key in TIMESTAMP_KEYS:
        if key in doc:
            return parse_iso(doc.get(key))
    return None


def remote_is_newer(local: dict, remote: dict) -> bool:
    remote_ts = modified_at(remote)
    local_ts = modified_at(local)
    if remote_ts is None or local_ts is None:
        return False
    return remote_ts > local_ts


def resolve(local: Iterable[dict], remote: Iterable[dict]) -> list[dict]:
    """Last-write-wins merge of two document lists keyed by ``id``.

    Remote replaces local only when its modification timestamp is strictly
    newer. Documents without an id are kept from the local side and dropped
    from the remote side. Output keeps local order, then remote-only ids in
    remote order.
    """
    merged: list[dict] = []
    index_by_id: dict[str, int] = {}
    for doc in local:
        if not isinstance(doc, dict):
            continue
        doc_id = str(doc.get("id", "")).strip()
        if doc_id and doc_id in index_by_id:
            continue
        if doc_id:
            index_by_id[doc_id] = len(merged)
        merged.append(dict(doc))

    for doc in remote:
        if not isinstance(doc, dict):
            continue
        doc_id = str(doc.get("id", "")).strip()
        if not doc_id:
            continue
        position = index_by_id.get(doc_id)
        if position is None:
            index_by_id[doc_id] = len(merged)
            merged.append(dict(doc))
        elif remote_is_newer(merged[position], doc):
            merged[position] = dict(doc)
    return merged
