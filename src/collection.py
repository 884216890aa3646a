from collections.abc import Mapping
from typing import Any, Iterator, Optional

import httpx

COLLECTION_FN = "collection"


class Collection(Mapping):
    """卡片 id -> 持有張數；張數歸零就刪掉，不會留下 0"""

    def __init__(self, counts: Optional[Mapping[str, int]] = None):
        self._counts: dict[str, int] = {}
        for card_id, count in (counts or {}).items():
            self.set_count(card_id, count)

    def __getitem__(self, card_id: str) -> int:
        return self._counts[card_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._counts)

    def __len__(self) -> int:
        return len(self._counts)

    def __repr__(self) -> str:
        return f"Collection({self._counts!r})"

    def set_count(self, card_id: str, count: int) -> int:
        if count > 0:
            self._counts[card_id] = count
        else:
            self._counts.pop(card_id, None)
            count = 0
        return count

    def increment(self, card_id: str, delta: int = 1) -> int:
        return self.set_count(card_id, self.get(card_id, 0) + delta)

    def decrement(self, card_id: str, delta: int = 1) -> int:
        return self.set_count(card_id, max(0, self.get(card_id, 0) - delta))

    def to_payload(self) -> dict[str, int]:
        return dict(self._counts)

    @classmethod
    def from_payload(cls, payload: Optional[Mapping[str, Any]]) -> "Collection":
        """遠端資料只接受正整數，其他值直接丟掉"""
        counts = {}
        for card_id, value in (payload or {}).items():
            if isinstance(value, bool) or not isinstance(value, int):
                continue
            if value > 0:
                counts[str(card_id)] = value
        return cls(counts)


class CollectionApiError(Exception):
    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(message)


class CollectionApiClient:
    """收藏資料的遠端存取 (GET 讀取 / PUT 儲存)"""

    def __init__(self, base_url: str, token: str, client: Optional[httpx.AsyncClient] = None):
        self.url = f"{base_url.rstrip('/')}/{COLLECTION_FN}"
        self.token = token
        self._client = client or httpx.AsyncClient(timeout=20.0)

    async def __aenter__(self) -> "CollectionApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    @staticmethod
    def _raise_for_error(resp: httpx.Response) -> None:
        if resp.is_success:
            return
        try:
            body = resp.json()
        except ValueError:
            body = None
        message = body.get("error") if isinstance(body, dict) else None
        raise CollectionApiError(resp.status_code, message or resp.reason_phrase)

    async def load(self) -> Collection:
        resp = await self._client.get(self.url, headers=self._headers())
        self._raise_for_error(resp)
        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise CollectionApiError(resp.status_code, "回應不是 JSON 物件")
        return Collection.from_payload(body.get("collection"))

    async def save(self, collection: Collection) -> None:
        resp = await self._client.put(
            self.url,
            headers=self._headers(),
            json={"collection": collection.to_payload()},
        )
        self._raise_for_error(resp)
