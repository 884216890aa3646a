import re
from pathlib import PurePosixPath
from typing import Iterable, Optional, Protocol
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from constants import (
    DEFAULT_RARITY_SYMBOL,
    DEFAULT_WEAKNESS_VALUE,
    DETAIL_PAGE_EXT,
    ENERGY_ALIASES,
    MAX_CARD_NUMBER,
    MIN_CARD_NUMBER,
    RARITY_SYMBOLS,
    SOURCE_BASE,
)
from models import Attack, CardDetail, CardStub, EnergyCost, ExStatus, PackInfo, Weakness

CARD_LIST_RE = re.compile(r"Card\s+List", re.I)
THEMED_RE = re.compile(r"Themed\s+Collections?", re.I)
PACK_LIST_RE = re.compile(r"Booster\s+Pack\s+List", re.I)

RARITY_ICON_RE = re.compile(
    r"/(" + "|".join(RARITY_SYMBOLS) + r")\.png", re.I
)
TYPE_ICON_RE = re.compile(
    r"/(" + "|".join(ENERGY_ALIASES) + r")\.png", re.I
)
HP_RE = re.compile(r"(\d+)\s*HP\b")
MODIFIER_RE = re.compile(r"(?<![\w/])([+-]\d+)(?![\w.])")
EX_TOKEN_RE = re.compile(r"(?<![A-Za-z])ex(?![A-Za-z])")
MEGA_RE = re.compile(r"\bmega\b", re.I)
WHITESPACE_RE = re.compile(r"\s+")


def html_to_text(fragment: str) -> str:
    """HTML 片段 -> 去掉標籤、解碼實體後的純文字"""
    if not fragment:
        return ""
    text = BeautifulSoup(fragment, "lxml").get_text(" ")
    return WHITESPACE_RE.sub(" ", text).strip()


class SetPageExtractor(Protocol):
    """系列頁解析介面：之後換成結構化解析也不影響正規化"""

    def extract_cards(self, markup: str, slug: str) -> list[CardStub]: ...

    def extract_packs(self, markup: str) -> list[PackInfo]: ...


def card_list_span(markup: str) -> tuple[int, int]:
    """Card List 區段；後面若有 Themed Collections 就截在它之前"""
    start_match = CARD_LIST_RE.search(markup)
    start = start_match.end() if start_match else 0
    themed = THEMED_RE.search(markup, start)
    end = themed.start() if themed else len(markup)
    return start, end


def classify_category(window: str) -> str:
    if "Supporter" in window:
        return "supporter"
    if "Trainer" in window:
        return "item"
    return "pokemon"


def determine_ex_status(name: str, window: str) -> ExStatus:
    has_ex = bool(EX_TOKEN_RE.search(name) or EX_TOKEN_RE.search(window))
    if not has_ex:
        return ExStatus.NON_EX
    if MEGA_RE.search(name):
        return ExStatus.MEGA_EX
    return ExStatus.EX


class WindowExtractor:
    """以卡名連結附近的一段原始碼判斷稀有度、屬性等資訊

    網站的 HTML 不保證結構一致，但圖示總是出現在卡名連結附近，
    所以用固定大小的視窗掃描。結果是盡力而為，不保證完全正確。
    """

    def __init__(self, lookbehind: int = 400, lookahead: int = 4000):
        self.lookbehind = lookbehind
        self.lookahead = lookahead

    def _anchor_re(self, slug: str) -> re.Pattern:
        return re.compile(
            r"<a\s[^>]*?href\s*=\s*[\"'](?:[^\"']*/)?"
            + re.escape(slug)
            + r"/(\d+)\."
            + DETAIL_PAGE_EXT
            + r"[\"'][^>]*>(.*?)</a>",
            re.I | re.S,
        )

    def extract_cards(self, markup: str, slug: str) -> list[CardStub]:
        start, end = card_list_span(markup)
        section = markup[start:end]

        matches = []
        seen: set[int] = set()
        for match in self._anchor_re(slug).finditer(section):
            inner = match.group(2)
            if re.search(r"<img\b", inner, re.I):
                continue  # 縮圖連結
            number = int(match.group(1))
            if not MIN_CARD_NUMBER <= number <= MAX_CARD_NUMBER or number in seen:
                continue
            name = html_to_text(inner)
            if not name:
                continue
            seen.add(number)
            matches.append((match, number, name))

        stubs = []
        prev_end = 0
        for i, (match, number, name) in enumerate(matches):
            next_start = matches[i + 1][0].start() if i + 1 < len(matches) else len(section)
            win_start = max(prev_end, match.start() - self.lookbehind)
            win_end = min(next_start, match.end() + self.lookahead)
            before = section[win_start : match.start()]
            after = section[match.end() : win_end]
            stubs.append(self._classify(number, name, before, after))
            prev_end = match.end()

        stubs.sort(key=lambda s: s.number)
        return stubs

    def _classify(self, number: int, name: str, before: str, after: str) -> CardStub:
        rarity = RARITY_ICON_RE.search(after)
        if rarity is None:
            behind = RARITY_ICON_RE.findall(before)
            rarity_symbol = behind[-1].lower() if behind else DEFAULT_RARITY_SYMBOL
        else:
            rarity_symbol = rarity.group(1).lower()
        hp = HP_RE.search(html_to_text(after))

        # 第一個類型圖示是卡片屬性，之後第一個不同的 (非無色) 是弱點，其後的無色圖示是撤退費用
        icons = [(m.start(), ENERGY_ALIASES[m.group(1).lower()]) for m in TYPE_ICON_RE.finditer(after)]
        energy = icons[0][1] if icons else None
        weakness = None
        retreat_from = icons[0][0] if icons else None
        for pos, icon in icons[1:]:
            if icon != energy and icon != "Colorless":
                modifier = MODIFIER_RE.search(after, pos)
                value = abs(int(modifier.group(1))) if modifier else DEFAULT_WEAKNESS_VALUE
                weakness = Weakness(type=icon, value=value)
                retreat_from = pos
                break

        retreat = None
        if retreat_from is not None:
            retreat = sum(
                1 for pos, icon in icons if pos > retreat_from and icon == "Colorless"
            )

        return CardStub(
            number=number,
            name=name,
            type=classify_category(after),
            rarity_symbol=rarity_symbol,
            health=int(hp.group(1)) if hp else None,
            energy_type=energy,
            weakness=weakness,
            retreat_cost=retreat,
            ex_status=determine_ex_status(name, html_to_text(after)),
        )

    def extract_packs(self, markup: str, base_url: str = SOURCE_BASE) -> list[PackInfo]:
        marker = PACK_LIST_RE.search(markup)
        if not marker:
            return []
        table_end = markup.find("</table>", marker.end())
        section = markup[marker.end() : table_end if table_end != -1 else len(markup)]

        soup = BeautifulSoup(section, "lxml")
        packs: list[PackInfo] = []
        seen: set[str] = set()
        for a_tag in soup.find_all("a", href=True):
            img = a_tag.find("img")
            if not img or not img.get("src"):
                continue
            pack_id = pack_id_from_href(a_tag["href"])
            if not pack_id or pack_id in seen:
                continue
            seen.add(pack_id)
            name = (img.get("alt") or "").strip() or a_tag.get_text(" ", strip=True)
            packs.append(
                PackInfo(
                    id=pack_id,
                    name=name or pack_id.title(),
                    image_url=urljoin(base_url + "/", img["src"].strip()),
                )
            )
        return packs


def pack_id_from_href(href: str) -> Optional[str]:
    path = PurePosixPath(urlparse(href.strip()).path)
    stem = path.stem if path.suffix else path.name
    return stem.lower() or None


STAGE_RE = re.compile(r"\b(Basic|Stage\s*[12])\b")
ILLUSTRATOR_RE = re.compile(r"Illustrat(?:ion|or|ed\s+by)\s*:?", re.I)
CRAFT_COST_RE = re.compile(r"(?:Cost\s+to\s+craft|Crafting\s+Cost)\D{0,40}?(\d[\d,]*)", re.I)
BOOSTER_SECTION_RE = re.compile(r"Booster\s+Packs?|Available\s+in", re.I)


def energy_counts(icons: list[str]) -> list[EnergyCost]:
    counts: dict[str, int] = {}
    for icon in icons:
        counts[icon] = counts.get(icon, 0) + 1
    return [EnergyCost(type=icon, count=count) for icon, count in counts.items()]


def parse_stage(text: str) -> Optional[str]:
    match = STAGE_RE.search(text)
    if not match:
        return None
    return re.sub(r"Stage\s*", "Stage ", match.group(1))


def parse_attacks(soup: BeautifulSoup) -> list[Attack]:
    """能量圖示獨佔第一格、下一格是招式名稱的列"""
    attacks = []
    for row in soup.find_all("tr"):
        cells = row.find_all("td", recursive=False)
        if len(cells) < 2 or cells[0].get_text(strip=True):
            continue
        icons = []
        for img in cells[0].find_all("img"):
            match = TYPE_ICON_RE.search(img.get("src", ""))
            if match:
                icons.append(ENERGY_ALIASES[match.group(1).lower()])
        if not icons or HP_RE.search(row.get_text(" ")):
            continue
        name_tag = cells[1].find(["b", "strong", "span"]) or cells[1]
        name = WHITESPACE_RE.sub(" ", name_tag.get_text(" ", strip=True))
        if not name or name[0].isdigit() or name[0] in "+-":
            continue
        attacks.append(Attack(name=name, cost=energy_counts(icons)))
    return attacks


def parse_illustrator(soup: BeautifulSoup) -> Optional[str]:
    label = soup.find(string=ILLUSTRATOR_RE)
    if label is None:
        return None
    cell = label.find_parent(["td", "th", "p", "div", "span"]) or label.parent
    name = ILLUSTRATOR_RE.sub("", cell.get_text(" ", strip=True), count=1).strip(" :")
    if not name:
        sibling = cell.find_next_sibling()
        name = sibling.get_text(" ", strip=True) if sibling else ""
    return WHITESPACE_RE.sub(" ", name) or None


def parse_craft_cost(text: str) -> Optional[int]:
    match = CRAFT_COST_RE.search(text)
    return int(match.group(1).replace(",", "")) if match else None


def parse_booster_packs(markup: str, pack_ids: Iterable[str]) -> list[str]:
    """收錄卡包：只認得該系列已知的卡包 id"""
    known = set(pack_ids)
    marker = BOOSTER_SECTION_RE.search(markup)
    if not marker or not known:
        return []
    table_end = markup.find("</table>", marker.end())
    section = markup[marker.end() : table_end if table_end != -1 else len(markup)]

    found: list[str] = []
    for a_tag in BeautifulSoup(section, "lxml").find_all("a", href=True):
        pack_id = pack_id_from_href(a_tag["href"])
        if pack_id in known and pack_id not in found:
            found.append(pack_id)
    return found


def parse_card_detail(markup: str, pack_ids: Iterable[str] = ()) -> CardDetail:
    """卡片詳細頁：進化階段、招式 (名稱與能量)、繪師、合成費用、收錄卡包"""
    soup = BeautifulSoup(markup, "lxml")
    text = WHITESPACE_RE.sub(" ", soup.get_text(" "))
    return CardDetail(
        stage=parse_stage(text),
        attacks=parse_attacks(soup),
        illustrator=parse_illustrator(soup),
        craft_cost=parse_craft_cost(text),
        booster_packs=parse_booster_packs(markup, pack_ids),
    )


def apply_card_detail(stub: CardStub, detail: CardDetail, include_stage: bool = True) -> CardStub:
    update = {
        "attacks": detail.attacks or stub.attacks,
        "illustrator": detail.illustrator or stub.illustrator,
        "craft_cost": detail.craft_cost if detail.craft_cost is not None else stub.craft_cost,
        "booster_packs": detail.booster_packs or stub.booster_packs,
    }
    # 訓練家卡沒有進化階段
    if include_stage and stub.type == "pokemon":
        update["stage"] = detail.stage or stub.stage
    return stub.model_copy(update=update)
