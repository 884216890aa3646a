import re
from typing import Iterable, Mapping, Optional
from urllib.parse import urljoin

import questionary
from loguru import logger

from constants import NON_SET_SLUGS, NON_SET_TEXT, SLUG_TO_SET_ID, SOURCE_BASE
from models import CatalogEntry, ManualSets, SelectedSet
from parser import html_to_text

SET_ANCHOR_RE = re.compile(
    r"""<a\s[^>]*?href\s*=\s*["']((?:https?://(?:www\.)?serebii\.net)?/tcgpocket/([a-z0-9-]+)/?)["'][^>]*>(.*?)</a>""",
    re.I | re.S,
)
HINT_RE = re.compile(r">\s*(\d{1,3})\s*<")
NUMERIC_TEXT_RE = re.compile(r"^[\d\s,./:-]+$")
DATE_TEXT_RE = re.compile(
    r"\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4}\b",
    re.I,
)


def _is_set_text(text: str) -> bool:
    if not text:
        return False
    if text.lower() in NON_SET_TEXT:
        return False
    if NUMERIC_TEXT_RE.match(text) or DATE_TEXT_RE.search(text):
        return False
    return True


def resolve_catalog(markup: str, base_url: str = SOURCE_BASE) -> list[CatalogEntry]:
    """解析目錄頁，回傳依頁面順序排列的系列清單"""
    entries: list[CatalogEntry] = []
    seen: set[str] = set()

    for match in SET_ANCHOR_RE.finditer(markup):
        href, slug, inner = match.group(1), match.group(2).lower(), match.group(3)
        if slug in NON_SET_SLUGS or slug in seen:
            continue
        name = html_to_text(inner)
        if not _is_set_text(name):
            continue
        seen.add(slug)
        entries.append(
            CatalogEntry(slug=slug, name=name, url=urljoin(base_url, href))
        )

    # 頁面上孤立的小整數依序當作卡片數提示，不保證對應正確
    hints = [int(n) for n in HINT_RE.findall(markup) if 0 < int(n) < 1000]
    missing = [e for e in entries if e.total_cards_hint is None]
    for entry, hint in zip(missing, hints):
        entry.total_cards_hint = hint

    return entries


def slug_table(manual: Optional[ManualSets] = None) -> dict[str, str]:
    table = dict(SLUG_TO_SET_ID)
    if manual is not None:
        table.update(manual.set_ids)
    return table


def select_sets(
    entries: Iterable[CatalogEntry],
    slug_ids: Mapping[str, str],
    allowed_ids: Optional[Iterable[str]] = None,
) -> list[SelectedSet]:
    """slug 對應到內部系列代碼；沒有對應的直接略過，再套用 --set 篩選"""
    allowed = set(allowed_ids) if allowed_ids else None
    selected = []
    for entry in entries:
        set_id = slug_ids.get(entry.slug)
        if not set_id:
            logger.debug(f"略過未對應的系列: {entry.slug}")
            continue
        if allowed is not None and set_id not in allowed:
            continue
        selected.append(SelectedSet(set_id=set_id, entry=entry))
    return selected


async def prompt_for_set_ids(entries: Iterable[CatalogEntry], manual: ManualSets) -> bool:
    """互動模式：詢問未對應系列的代碼，回傳是否有更新"""
    table = slug_table(manual)
    updated = False
    for entry in entries:
        if entry.slug in table:
            continue
        answer = await questionary.text(
            f'"{entry.name}" ({entry.slug}) 的系列代碼 (留空略過):'
        ).ask_async()
        answer = (answer or "").strip()
        if not answer:
            continue
        manual.set_ids[entry.slug] = answer
        updated = True
        logger.info(f"新增系列對應: {entry.slug} -> {answer}")
    return updated
