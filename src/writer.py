import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from loguru import logger

from constants import CATALOG_URL
from context import AssetPaths
from models import CardStub, IndexPayload, ManualSets, SetInfo, SetPayload
from normalize import card_id, parse_art_source


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def _read_json(path: Path) -> dict:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def apply_reprints(set_id: str, stubs: Iterable[CardStub], manual: ManualSets) -> list[CardStub]:
    """manual-sets.json 的 reprints 設定：標記沿用其他卡圖的卡片"""
    table = manual.reprints.get(set_id) or {}
    result = []
    for stub in stubs:
        reference = table.get(str(stub.number))
        if reference:
            source = parse_art_source(reference)
            if source is None:
                logger.warning(f"reprints 設定格式錯誤，略過: {set_id} #{stub.number} -> {reference!r}")
            else:
                stub = stub.model_copy(
                    update={
                        "art_group": card_id(source.set, source.number),
                        "art_source": source,
                    }
                )
        result.append(stub)
    return result


class OutputWriter:
    """寫出 assets/data 底下的 JSON"""

    def __init__(self, paths: AssetPaths, source: str = CATALOG_URL):
        self.paths = paths
        self.source = source

    def write_set(self, set_id: str, stubs: Iterable[CardStub]) -> Path:
        payload = SetPayload(set=set_id, cards=sorted(stubs, key=lambda s: s.number))
        path = self.paths.set_json(set_id)
        _write_json(path, payload.to_json_dict())
        logger.info(f"寫入 JSON: {path} (共 {len(payload.cards)} 張)")
        return path

    def load_set(self, set_id: str) -> list[CardStub]:
        path = self.paths.set_json(set_id)
        if not path.is_file():
            return []
        return SetPayload.model_validate(_read_json(path)).cards

    def load_index(self) -> Optional[IndexPayload]:
        if not self.paths.index_file.is_file():
            return None
        return IndexPayload.model_validate(_read_json(self.paths.index_file))

    def write_index(self, sets: Iterable[SetInfo], order: Iterable[str] = ()) -> IndexPayload:
        """更新 index.json；本次沒處理到的系列保留上次的內容"""
        merged: dict[str, SetInfo] = {}
        previous = self.load_index()
        if previous is not None:
            for info in previous.sets:
                merged[info.id] = info
        for info in sets:
            merged[info.id] = info

        rank = {set_id: i for i, set_id in enumerate(order)}
        ordered = sorted(
            merged.values(), key=lambda s: rank.get(s.id, len(rank))
        )
        payload = IndexPayload(
            generated_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            source=self.source,
            sets=ordered,
        )
        _write_json(self.paths.index_file, payload.to_json_dict())
        logger.info(f"寫入 index: {self.paths.index_file} (共 {len(ordered)} 個系列)")
        return payload

    def load_manual(self) -> ManualSets:
        path = self.paths.manual_file
        if not path.is_file():
            return ManualSets()
        try:
            return ManualSets.model_validate(_read_json(path))
        except ValueError as e:
            logger.warning(f"無法讀取 {path}，改用空白設定: {e}")
            return ManualSets()

    def save_manual(self, manual: ManualSets) -> None:
        _write_json(self.paths.manual_file, manual.to_json_dict())
