from types import MappingProxyType

SOURCE_BASE = "https://www.serebii.net"
CATALOG_PATH = "/tcgpocket/"
CATALOG_URL = f"{SOURCE_BASE}{CATALOG_PATH}"
DETAIL_PAGE_EXT = "shtml"
USER_AGENT = "Mozilla/5.0 (PocketDex assets)"
REQUEST_TIMEOUT = 25.0

# 網站 slug -> 內部系列代碼
SLUG_TO_SET_ID = MappingProxyType(
    {
        "geneticapex": "A1",
        "mythicalisland": "A1a",
        "space-timesmackdown": "A2",
        "triumphantlight": "A2a",
        "shiningrevelry": "A2b",
        "celestialguardians": "A3",
        "extradimensionalcrisis": "A3a",
        "eeveegrove": "A3b",
        "wisdomofseaandsky": "A4",
        "secludedsprings": "A4a",
        "deluxepackex": "A4b",
        "megarising": "B1",
        "crimsonblaze": "B1a",
        "promo-a": "PROMO-A",
        "promo-b": "PROMO-B",
    }
)

# 目錄頁上不是系列的連結
NON_SET_SLUGS = frozenset(
    {"image", "logo", "th", "decks", "rules", "events", "missions", "items", "cards"}
)
NON_SET_TEXT = frozenset(
    {
        "home",
        "sets",
        "card list",
        "booster packs",
        "booster pack list",
        "themed collections",
        "decks",
        "rules",
        "events",
        "missions",
        "pokédex",
        "pokedex",
        "set list",
        "promo cards",
    }
)

RARITY_SYMBOLS = (
    "diamond1",
    "diamond2",
    "diamond3",
    "diamond4",
    "star1",
    "star2",
    "star3",
    "shiny1",
    "shiny2",
    "crown",
)
DEFAULT_RARITY_SYMBOL = "diamond1"

# 圖示檔名 -> 能量類型 (網站用 electric，內部用 lightning)
ENERGY_ALIASES = MappingProxyType(
    {
        "grass": "Grass",
        "fire": "Fire",
        "water": "Water",
        "electric": "Lightning",
        "lightning": "Lightning",
        "psychic": "Psychic",
        "fighting": "Fighting",
        "darkness": "Darkness",
        "metal": "Metal",
        "dragon": "Dragon",
        "colorless": "Colorless",
    }
)
# 內部類型 -> 網站圖示檔名
TYPE_ICON_SOURCE = MappingProxyType(
    {
        "grass": "grass",
        "fire": "fire",
        "water": "water",
        "lightning": "electric",
        "psychic": "psychic",
        "fighting": "fighting",
        "darkness": "darkness",
        "metal": "metal",
        "dragon": "dragon",
        "colorless": "colorless",
    }
)
DEFAULT_WEAKNESS_VALUE = 20

MIN_CARD_NUMBER = 1
MAX_CARD_NUMBER = 600

# 預設值刻意保守，避免被限流
DEFAULT_FETCH_DELAY_MS = 600
DEFAULT_ASSET_CONCURRENCY = 2
DEFAULT_ASSET_DELAY_MS = 200
DEFAULT_CACHE_HOURS = 168
DEFAULT_FETCH_RETRY = 2
DEFAULT_FETCH_COOLDOWN_MS = 5000

CARD_JPEG_QUALITY = 82
PNG_COMPRESS_LEVEL = 9


def rarity_icon_url(symbol: str) -> str:
    return f"{SOURCE_BASE}/tcgpocket/image/{symbol}.png"


def type_icon_url(energy: str) -> str:
    return f"{SOURCE_BASE}/tcgpocket/image/{TYPE_ICON_SOURCE[energy]}.png"


def set_logo_url(slug: str) -> str:
    return f"{SOURCE_BASE}/tcgpocket/logo/{slug}.png"


def card_image_url(slug: str, number: int) -> str:
    return f"{SOURCE_BASE}/tcgpocket/{slug}/{number}.jpg"


def card_page_url(slug: str, number: int) -> str:
    return f"{SOURCE_BASE}/tcgpocket/{slug}/{number:03d}.{DETAIL_PAGE_EXT}"
