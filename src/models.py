from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """JSON 一律使用 camelCase 欄位名稱"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Rarity(str, Enum):
    COMMON = "Common"
    UNCOMMON = "Uncommon"
    RARE = "Rare"
    DOUBLE_RARE = "Double Rare"
    ART_RARE = "Art Rare"
    SUPER_RARE = "Super Rare"
    ILLUSTRATION_RARE = "Illustration Rare"
    CROWN_RARE = "Crown Rare"
    PROMO = "Promo"


class CardType(str, Enum):
    POKEMON = "Pokémon"
    TRAINER = "Trainer"
    ITEM = "Item"
    SUPPORTER = "Supporter"
    POKEMON_TOOL = "Pokémon Tool"


class ExStatus(str, Enum):
    NON_EX = "non-ex"
    EX = "ex"
    MEGA_EX = "mega-ex"


class Printing(CamelModel):
    """卡片在某個系列中的一次收錄"""

    model_config = ConfigDict(frozen=True)

    set: str
    number: int


class Weakness(CamelModel):
    model_config = ConfigDict(frozen=True)

    type: str
    value: int


class PackInfo(CamelModel):
    id: str
    name: str
    image_url: Optional[str] = None


class CatalogEntry(CamelModel):
    """目錄頁上解析出的系列連結"""

    slug: str
    name: str
    url: str
    total_cards_hint: Optional[int] = None


class SelectedSet(BaseModel):
    set_id: str
    entry: CatalogEntry


class EnergyCost(CamelModel):
    model_config = ConfigDict(frozen=True)

    type: str
    count: int


class Attack(CamelModel):
    """招式只記名稱與能量需求"""

    model_config = ConfigDict(frozen=True)

    name: str
    cost: List[EnergyCost] = []


class CardDetail(CamelModel):
    """卡片詳細頁補充的資料"""

    stage: Optional[str] = None
    attacks: List[Attack] = []
    illustrator: Optional[str] = None
    craft_cost: Optional[int] = None
    booster_packs: List[str] = []


class CardStub(CamelModel):
    """系列頁解析出的原始卡片資料 (尚未正規化)"""

    model_config = ConfigDict(frozen=True)

    number: int
    name: str
    type: str = "pokemon"
    rarity_symbol: str = "diamond1"
    health: Optional[int] = None
    energy_type: Optional[str] = None
    weakness: Optional[Weakness] = None
    retreat_cost: Optional[int] = None
    ex_status: ExStatus = ExStatus.NON_EX
    art_group: Optional[str] = None
    art_source: Optional[Printing] = None
    stage: Optional[str] = None
    attacks: List[Attack] = []
    illustrator: Optional[str] = None
    craft_cost: Optional[int] = None
    booster_packs: List[str] = []


class SetPayload(CamelModel):
    set: str
    cards: List[CardStub] = []


class SetInfo(CamelModel):
    id: str
    name: str
    total_cards: int
    packs: List[PackInfo] = []
    slug: str
    release_date: Optional[str] = None


class IndexPayload(CamelModel):
    generated_at: str
    source: str
    sets: List[SetInfo] = []


class ManualSets(CamelModel):
    """手動維護的 manual-sets.json"""

    set_ids: dict[str, str] = {}
    packs: dict[str, List[PackInfo]] = {}
    # 系列代碼 -> {卡號: 原始卡片 id}
    reprints: dict[str, dict[str, str]] = {}


class Card(CamelModel):
    """正規化後的卡片"""

    id: str
    set: str
    number: int
    name: str
    image: str
    rarity: Rarity = Rarity.COMMON
    type: CardType = CardType.POKEMON
    hp: Optional[int] = None
    stage: Optional[str] = None
    attacks: List[Attack] = []
    weakness: Optional[Weakness] = None
    retreat_cost: Optional[int] = None
    illustrator: Optional[str] = None
    craft_cost: Optional[int] = None
    energy_type: Optional[str] = None
    ex_status: ExStatus = ExStatus.NON_EX
    rarity_symbol: Optional[str] = None
    art_group: Optional[str] = None
    art_source: Optional[Printing] = None
    booster_packs: List[str] = []


class CanonicalCard(Card):
    """同一張卡圖在各系列的收錄合併成一張邏輯卡片"""

    printings: List[Printing] = []
    set_ids: List[str] = []
    primary_id: str = ""


class SetProgress(CamelModel):
    total: int = 0
    owned: int = 0
    total_copies: int = 0
    percentage: float = Field(default=0.0, ge=0, le=100)
