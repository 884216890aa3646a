"""卡片正規化、同圖卡合併與收集進度計算

系列 JSON 與 index.json 讀進來後都經過這裡，產生畫面使用的卡片資料。
"""

from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Union

from models import (
    CanonicalCard,
    Card,
    CardStub,
    CardType,
    Printing,
    Rarity,
    SetProgress,
)

ASSET_BASE = "/assets"

RARITY_BY_SYMBOL = MappingProxyType(
    {
        "diamond1": Rarity.COMMON,
        "diamond2": Rarity.UNCOMMON,
        "diamond3": Rarity.RARE,
        "diamond4": Rarity.DOUBLE_RARE,
        "star1": Rarity.DOUBLE_RARE,
        "star2": Rarity.SUPER_RARE,
        "star3": Rarity.ILLUSTRATION_RARE,
        "shiny1": Rarity.ART_RARE,
        "shiny2": Rarity.SUPER_RARE,
        "crown": Rarity.CROWN_RARE,
    }
)

RARITY_BY_LABEL = MappingProxyType(
    {
        "common": Rarity.COMMON,
        "uncommon": Rarity.UNCOMMON,
        "rare": Rarity.RARE,
        "double rare": Rarity.DOUBLE_RARE,
        "art rare": Rarity.ART_RARE,
        "super rare": Rarity.SUPER_RARE,
        "special art rare": Rarity.SUPER_RARE,
        "illustration rare": Rarity.ILLUSTRATION_RARE,
        "immersive rare": Rarity.ILLUSTRATION_RARE,
        "shiny rare": Rarity.ART_RARE,
        "double shiny rare": Rarity.SUPER_RARE,
        "crown rare": Rarity.CROWN_RARE,
        "promo": Rarity.PROMO,
    }
)

CARD_TYPE_BY_CATEGORY = MappingProxyType(
    {
        "pokemon": CardType.POKEMON,
        "pokémon": CardType.POKEMON,
        "trainer": CardType.TRAINER,
        "item": CardType.ITEM,
        "supporter": CardType.SUPPORTER,
        "pokemontool": CardType.POKEMON_TOOL,
        "pokemon tool": CardType.POKEMON_TOOL,
        "pokémon tool": CardType.POKEMON_TOOL,
    }
)

UNKNOWN_SET_ORDER = 10_000
GROUP_FIELDS = {"id", "set", "number", "printings", "set_ids", "primary_id"}


def pad_number(number: Union[int, str]) -> str:
    return f"{int(number):03d}"


def card_id(set_id: str, number: Union[int, str]) -> str:
    return f"{set_id}-{pad_number(number)}"


def card_image_path(set_id: str, number: Union[int, str]) -> str:
    return f"{ASSET_BASE}/cards/{set_id}/{pad_number(number)}.jpg"


def map_rarity(symbol: Optional[str] = None, label: Optional[str] = None) -> Rarity:
    """稀有度：先看文字標籤，再看圖示代碼，都不認得就是 Common"""
    if label:
        by_label = RARITY_BY_LABEL.get(label.strip().lower())
        if by_label is not None:
            return by_label
    if symbol:
        return RARITY_BY_SYMBOL.get(symbol.strip().lower(), Rarity.COMMON)
    return Rarity.COMMON


def map_card_type(category: Optional[str]) -> CardType:
    if not category:
        return CardType.POKEMON
    key = category.strip().lower()
    if key in CARD_TYPE_BY_CATEGORY:
        return CARD_TYPE_BY_CATEGORY[key]
    for card_type in CardType:
        if card_type.value.lower() == key:
            return card_type
    return CardType.POKEMON


def parse_art_source(value: Any) -> Optional[Printing]:
    if value is None or value == "":
        return None
    if isinstance(value, Printing):
        return value
    if isinstance(value, Mapping):
        return Printing.model_validate(value)
    # "A1-001" 形式
    set_id, _, number = str(value).rpartition("-")
    if not set_id or not number.isdigit():
        return None
    return Printing(set=set_id, number=int(number))


def normalize_card_stub(raw: Union[CardStub, Mapping[str, Any]], set_id: Optional[str] = None) -> Card:
    """原始卡片資料 -> Card"""
    data = raw.to_json_dict() if isinstance(raw, CardStub) else dict(raw)
    set_id = set_id or data.get("set")
    if not set_id:
        raise ValueError(f"卡片缺少系列代碼: {data.get('name')!r}")
    number = int(data.get("number") or data.get("cardNumber"))

    art_source = parse_art_source(data.get("artSource"))
    if art_source is not None:
        image = card_image_path(art_source.set, art_source.number)
    else:
        image = card_image_path(set_id, number)

    label = data.get("rarity") or data.get("rarityLabel")
    return Card.model_validate(
        {
            "id": card_id(set_id, number),
            "set": set_id,
            "number": number,
            "name": data.get("name") or f"{set_id} #{pad_number(number)}",
            "image": image,
            "rarity": map_rarity(data.get("raritySymbol"), label),
            "type": map_card_type(data.get("type")),
            "hp": data.get("hp", data.get("health")),
            "stage": data.get("stage"),
            "attacks": data.get("attacks") or data.get("moves") or [],
            "boosterPacks": data.get("boosterPacks") or [],
            "weakness": data.get("weakness"),
            "retreatCost": data.get("retreatCost"),
            "illustrator": data.get("illustrator"),
            "craftCost": data.get("craftCost", data.get("costToCraft")),
            "energyType": data.get("energyType"),
            "exStatus": data.get("exStatus") or "non-ex",
            "raritySymbol": data.get("raritySymbol"),
            "artGroup": data.get("artGroup"),
            "artSource": art_source,
        }
    )


def is_canonical_art(card: Card) -> bool:
    """卡圖是否就是自己系列+卡號那張 (不是借用別張的圖)"""
    return card.image == card_image_path(card.set, card.number)


def _rank(card: Card, set_order: Mapping[str, int]) -> tuple[int, int, int]:
    return (
        0 if is_canonical_art(card) else 1,
        set_order.get(card.set, UNKNOWN_SET_ORDER),
        card.number,
    )


def canonicalize(cards: Iterable[Card], set_order: Mapping[str, int]) -> list[CanonicalCard]:
    """依 artGroup (沒有就用卡片 id) 合併同圖卡

    primary 決定名稱、圖片與數值；group 的 set/number 則固定取排序最前的收錄。
    """
    groups: dict[str, dict[str, Any]] = {}
    for card in cards:
        key = card.art_group or card.id
        group = groups.get(key)
        if group is None:
            group = {"primary": card, "printings": {}, "set_ids": set()}
            groups[key] = group
        elif _rank(card, set_order) < _rank(group["primary"], set_order):
            group["primary"] = card
        group["set_ids"].add(card.set)
        group["printings"].setdefault(card_id(card.set, card.number), Printing(set=card.set, number=card.number))

    def printing_order(p: Printing) -> tuple[int, str, int]:
        return (set_order.get(p.set, UNKNOWN_SET_ORDER), p.set, p.number)

    result = []
    for key, group in groups.items():
        primary: Card = group["primary"]
        printings = sorted(group["printings"].values(), key=printing_order)
        first = printings[0]
        set_ids = sorted(group["set_ids"], key=lambda s: (set_order.get(s, UNKNOWN_SET_ORDER), s))
        result.append(
            CanonicalCard(
                **primary.model_dump(exclude=GROUP_FIELDS),
                id=key,
                set=first.set,
                number=first.number,
                printings=printings,
                set_ids=set_ids,
                primary_id=primary.id,
            )
        )
    return result


def set_order_from(set_ids: Iterable[str]) -> dict[str, int]:
    return {set_id: index for index, set_id in enumerate(set_ids)}


def group_in_set(group: CanonicalCard, set_id: str) -> bool:
    if group.set == set_id or set_id in group.set_ids:
        return True
    return any(p.set == set_id for p in group.printings)


def _progress(groups: Iterable[CanonicalCard], collection: Mapping[str, int]) -> SetProgress:
    total = owned = copies = 0
    for group in groups:
        total += 1
        count = collection.get(group.id, 0)
        if count > 0:
            owned += 1
            copies += count
    percentage = owned / total * 100 if total else 0.0
    return SetProgress(total=total, owned=owned, total_copies=copies, percentage=percentage)


def compute_set_progress(
    set_id: str, groups: Iterable[CanonicalCard], collection: Mapping[str, int]
) -> SetProgress:
    return _progress((g for g in groups if group_in_set(g, set_id)), collection)


def compute_collection_progress(
    groups: Iterable[CanonicalCard], collection: Mapping[str, int]
) -> SetProgress:
    return _progress(groups, collection)
