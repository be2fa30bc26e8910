from __future__ import annotations

from abc import ABC, abstractmethod


class RemoteStoreError(RuntimeError):
    pass


class RemoteStoreBase(ABC):
    @abstractmethod
    def write_session(self, user_id: str, record: dict) -> None:
        """Append a session document and bump the profile totals in one write."""
        raise NotImplementedError

    @abstractmethod
    def list_sessions(self, user_id: str, day: str | None = None) -> list[dict]:
        raise NotImplementedError

    @abstractmethod
    def get_profile(self, user_id: str) -> dict:
        raise NotImplementedError

    @abstractmethod
    def put_document(self, user_id: str, collection: str, doc: dict) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_documents(self, user_id: str, collection: str) -> list[dict]:
        raise NotImplementedError

    def list_profiles(self, limit: int = 10) -> list[dict]:
        _ = limit
        return []
