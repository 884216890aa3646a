import json
from pathlib import Path
from typing import Any, Mapping, Optional

from models import CanonicalCard, Card, IndexPayload, SetInfo, SetProgress
from normalize import (
    canonicalize,
    compute_collection_progress,
    compute_set_progress,
    normalize_card_stub,
    set_order_from,
)


class CardCatalog:
    """程式執行時使用的卡片目錄：讀入 index.json 與各系列 JSON 後正規化、合併"""

    def __init__(self, index: IndexPayload, payloads: Mapping[str, list[Mapping[str, Any]]]):
        self.sets: list[SetInfo] = list(index.sets)
        self.set_order = set_order_from(s.id for s in self.sets)
        self.printings: list[Card] = []
        for info in self.sets:
            for raw in payloads.get(info.id, []):
                self.printings.append(normalize_card_stub(raw, info.id))
        self.cards: list[CanonicalCard] = canonicalize(self.printings, self.set_order)
        self._by_id = {card.id: card for card in self.cards}
        self._printing_to_group = {
            f"{p.set}-{p.number:03d}": card for card in self.cards for p in card.printings
        }
        self._by_slug = {info.slug: info for info in self.sets}

    @classmethod
    def from_directory(cls, data_dir: Path) -> "CardCatalog":
        with open(data_dir / "index.json", encoding="utf-8") as f:
            index = IndexPayload.model_validate(json.load(f))
        payloads = {}
        for info in index.sets:
            path = data_dir / "sets" / f"{info.id}.json"
            if not path.is_file():
                continue
            with open(path, encoding="utf-8") as f:
                payloads[info.id] = json.load(f).get("cards", [])
        return cls(index, payloads)

    def get_card_by_id(self, card_id: str) -> Optional[CanonicalCard]:
        """group id 或任何一個收錄的 id 都找得到"""
        return self._by_id.get(card_id) or self._printing_to_group.get(card_id)

    def get_set_by_slug(self, slug: str) -> Optional[SetInfo]:
        return self._by_slug.get(slug)

    def cards_in_set(self, set_id: str) -> list[CanonicalCard]:
        return [c for c in self.cards if set_id in c.set_ids]

    def get_set_progress(self, set_id: str, collection: Mapping[str, int]) -> SetProgress:
        return compute_set_progress(set_id, self.cards, collection)

    def get_collection_progress(self, collection: Mapping[str, int]) -> SetProgress:
        return compute_collection_progress(self.cards, collection)
