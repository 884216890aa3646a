import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

from browser import fetch_session_cookies
from catalog import prompt_for_set_ids, resolve_catalog, select_sets, slug_table
from constants import (
    CATALOG_URL,
    DEFAULT_ASSET_CONCURRENCY,
    DEFAULT_ASSET_DELAY_MS,
    DEFAULT_CACHE_HOURS,
    DEFAULT_FETCH_COOLDOWN_MS,
    DEFAULT_FETCH_DELAY_MS,
    DEFAULT_FETCH_RETRY,
    RARITY_SYMBOLS,
    TYPE_ICON_SOURCE,
    card_image_url,
    card_page_url,
    rarity_icon_url,
    set_logo_url,
    type_icon_url,
)
from context import RunContext, SyncOptions
from downloader import CARDS, RARITY_ICONS, SET_ART, TYPE_ICONS, AssetDownloader, AssetTask
from errors import CatalogError, FetchError, SyncError
from fetcher import SourceClient
from models import CardStub, ManualSets, PackInfo, SelectedSet, SetInfo
from parser import SetPageExtractor, WindowExtractor, apply_card_detail, parse_card_detail
from progress import ConsoleProgress, ProgressObserver
from writer import OutputWriter, apply_reprints

LOG_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


class PocketDexSync:
    def __init__(
        self,
        context: RunContext,
        source: SourceClient,
        extractor: Optional[SetPageExtractor] = None,
    ):
        self.context = context
        self.options = context.options
        self.paths = context.paths
        self.source = source
        self.extractor = extractor or WindowExtractor()
        self.writer = OutputWriter(self.paths)
        self.downloader = AssetDownloader(context, source)

    async def run(self) -> None:
        try:
            if self.options.browser_session:
                self.source.set_cookies(await fetch_session_cookies(CATALOG_URL))
            if self.options.assets_only:
                await self.run_assets_only()
            else:
                await self.run_full()
        finally:
            self.cleanup_cache()
        self.log_summary()

    async def resolve_sets(self) -> tuple[list[SelectedSet], ManualSets]:
        logger.info(f"讀取系列目錄: {CATALOG_URL}")
        try:
            markup = await self.source.fetch_page(CATALOG_URL)
        except FetchError as e:
            raise CatalogError(f"無法讀取目錄頁: {e}") from e

        entries = resolve_catalog(markup)
        manual = self.writer.load_manual()
        if self.options.interactive and await prompt_for_set_ids(entries, manual):
            self.writer.save_manual(manual)

        selected = select_sets(entries, slug_table(manual), self.options.set_filter)
        if not selected:
            raise CatalogError("沒有選到任何系列，請確認 --set 參數或目錄頁內容")
        logger.info(f"共 {len(selected)} 個系列: {', '.join(s.set_id for s in selected)}")
        return selected, manual

    async def run_full(self) -> None:
        selected, manual = await self.resolve_sets()

        if not self.options.data_only:
            await self.download_icons()

        infos = []
        for item in selected:
            info = await self.sync_set(item, manual)
            if info is not None:
                infos.append(info)

        self.writer.write_index(infos, order=[s.set_id for s in selected])

    async def sync_set(self, item: SelectedSet, manual: ManualSets) -> Optional[SetInfo]:
        set_id, entry = item.set_id, item.entry
        logger.info(f"正在處理系列 {set_id} ({entry.name})...")
        try:
            markup = await self.source.fetch_page(entry.url)
        except FetchError as e:
            logger.warning(f"系列頁讀取失敗 {set_id}: {e}")
            self.context.counters.sets_failed += 1
            return None

        stubs = self.extractor.extract_cards(markup, entry.slug)
        if not stubs:
            logger.warning(f"{set_id} 沒有解析到任何卡片，保留上次的資料")
            self.context.counters.sets_failed += 1
            return None
        stubs = self.limit_cards(apply_reprints(set_id, stubs, manual))
        packs = self.resolve_packs(set_id, self.extractor.extract_packs(markup), manual)
        if not self.options.skip_details:
            stubs = await self.fetch_card_details(set_id, entry.slug, stubs, packs)

        info = SetInfo(
            id=set_id,
            name=entry.name,
            total_cards=len(stubs),
            packs=packs,
            slug=entry.slug,
        )
        # 先寫 JSON 再下載圖片
        self.writer.write_set(set_id, stubs)
        self.context.counters.sets_written += 1
        self.context.counters.cards_processed += len(stubs)

        if not self.options.data_only:
            await self.download_set_assets(info, stubs)
        return info

    async def fetch_card_details(
        self, set_id: str, slug: str, stubs: Sequence[CardStub], packs: Sequence[PackInfo]
    ) -> list[CardStub]:
        """逐張讀取卡片詳細頁，讀不到的卡片維持系列頁的資料"""
        pack_ids = [p.id for p in packs]
        include_stage = not self.options.skip_stage
        counters = self.context.counters
        result = []
        failed = 0
        for stub in stubs:
            try:
                markup = await self.source.fetch_page(card_page_url(slug, stub.number))
            except FetchError as e:
                logger.warning(f"卡片詳細頁讀取失敗 {set_id} #{stub.number}: {e}")
                counters.details_failed += 1
                failed += 1
                result.append(stub)
                continue
            counters.details_fetched += 1
            result.append(apply_card_detail(stub, parse_card_detail(markup, pack_ids), include_stage))
        logger.info(f"{set_id}: 詳細頁 {len(stubs)} 張，失敗 {failed}")
        return result

    def limit_cards(self, stubs: list[CardStub]) -> list[CardStub]:
        limit = self.options.limit_cards_per_set
        if limit and len(stubs) > limit:
            return stubs[:limit]
        return stubs

    def resolve_packs(self, set_id: str, extracted: list[PackInfo], manual: ManualSets) -> list[PackInfo]:
        """manual-sets.json 有卡包清單就用它，圖片網址從頁面上同 id 的卡包補上"""
        manual_packs = manual.packs.get(set_id)
        if not manual_packs:
            return extracted
        by_id = {p.id: p for p in extracted}
        resolved = []
        for pack in manual_packs:
            found = by_id.get(pack.id)
            image_url = pack.image_url or (found.image_url if found else None)
            if image_url is None:
                logger.warning(f"找不到卡包圖片: {set_id} {pack.id}")
            resolved.append(PackInfo(id=pack.id, name=pack.name, image_url=image_url))
        return resolved

    async def download_icons(self) -> None:
        rarity_tasks = [
            AssetTask(rarity_icon_url(symbol), self.paths.rarity_icons_dir / f"{symbol}.png")
            for symbol in RARITY_SYMBOLS
        ]
        type_tasks = [
            AssetTask(type_icon_url(energy), self.paths.type_icons_dir / f"{energy}.png")
            for energy in TYPE_ICON_SOURCE
        ]
        await self.downloader.download_batch(rarity_tasks, RARITY_ICONS)
        await self.downloader.download_batch(type_tasks, TYPE_ICONS)

    async def download_set_assets(self, info: SetInfo, stubs: Sequence[CardStub]) -> None:
        art_tasks = [AssetTask(set_logo_url(info.slug), self.paths.set_logo(info.id))]
        art_tasks += [
            AssetTask(pack.image_url or "", self.paths.pack_art(info.id, pack.id))
            for pack in info.packs
        ]
        await self.downloader.download_batch(art_tasks, SET_ART, info.id)

        card_tasks = [
            AssetTask(card_image_url(info.slug, stub.number), self.paths.card_image(info.id, stub.number))
            for stub in stubs
        ]
        await self.downloader.download_batch(
            card_tasks, CARDS, info.id, force=self.options.force_cards
        )

    async def run_assets_only(self) -> None:
        """沿用上次寫出的 JSON 決定要下載哪些圖片"""
        index = self.writer.load_index()
        if index is None:
            raise CatalogError(f"找不到 {self.paths.index_file}，請先執行資料同步")
        set_filter = self.options.set_filter
        sets = [s for s in index.sets if not set_filter or s.id in set_filter]
        if not sets:
            raise CatalogError("沒有選到任何系列，請確認 --set 參數")

        await self.download_icons()
        for info in sets:
            stubs = self.limit_cards(self.writer.load_set(info.id))
            logger.info(f"正在處理系列 {info.id} ({info.name})...")
            await self.download_set_assets(info, stubs)

    def cleanup_cache(self) -> None:
        if self.options.keep_cache:
            return
        if self.source.cache.purge():
            logger.info("已清除快取")

    def log_summary(self) -> None:
        counters = self.context.counters
        overall = counters.overall()
        logger.info(
            f"系列: 寫入 {counters.sets_written}，失敗 {counters.sets_failed}；卡片 {counters.cards_processed} 張"
        )
        if counters.details_fetched or counters.details_failed:
            logger.info(f"詳細頁: 成功 {counters.details_fetched}，失敗 {counters.details_failed}")
        logger.info(
            f"圖片: 下載 {overall.ok}，略過 {overall.skipped}，404 {overall.not_found}，失敗 {overall.failed}"
        )


async def run_sync(
    options: SyncOptions,
    observer: Optional[ProgressObserver] = None,
    extractor: Optional[SetPageExtractor] = None,
) -> RunContext:
    context = RunContext(options, observer=observer or ConsoleProgress())
    async with SourceClient(context) as source:
        await PocketDexSync(context, source, extractor).run()
    return context


def positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"必須是正整數: {value}")
    return number


def non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"不可為負數: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PocketDex 卡片資料與圖片同步")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--data-only", action="store_true", help="只寫 JSON，不下載圖片")
    mode.add_argument("--assets-only", action="store_true", help="只下載圖片，沿用既有 JSON")
    parser.add_argument("--limit-cards-per-set", type=positive_int, help="每個系列最多處理幾張卡")
    parser.add_argument("--set", dest="sets", help="系列代碼，以逗號分隔 (例如: A1,A1a)")
    parser.add_argument("--keep-cache", action="store_true", help="結束後保留頁面快取")
    parser.add_argument("--force-cards", action="store_true", help="卡圖已存在也重新下載")
    parser.add_argument("--fetch-delay", type=non_negative_int, default=DEFAULT_FETCH_DELAY_MS, help="頁面請求間隔 (ms)")
    parser.add_argument("--asset-concurrency", type=positive_int, default=DEFAULT_ASSET_CONCURRENCY)
    parser.add_argument("--asset-delay", type=non_negative_int, default=DEFAULT_ASSET_DELAY_MS, help="圖片請求間隔 (ms)")
    parser.add_argument("--assets-root", type=Path, default=Path("assets"))
    parser.add_argument("--cache-hours", type=float, default=DEFAULT_CACHE_HOURS)
    parser.add_argument("--force-refresh", action="store_true", help="忽略頁面快取")
    parser.add_argument("--fetch-retry", type=non_negative_int, default=DEFAULT_FETCH_RETRY)
    parser.add_argument("--fetch-cooldown", type=non_negative_int, default=DEFAULT_FETCH_COOLDOWN_MS)
    parser.add_argument("--interactive", action="store_true", help="詢問未對應系列的代碼")
    parser.add_argument("--browser-session", action="store_true", help="先用 Playwright 取得 cookie")
    parser.add_argument("--skip-details", action="store_true", help="不讀取卡片詳細頁")
    parser.add_argument("--skip-stage", action="store_true", help="不記錄進化階段")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file", type=Path)
    return parser


def options_from_args(args: argparse.Namespace) -> SyncOptions:
    set_filter = None
    if args.sets:
        set_filter = frozenset(s.strip() for s in args.sets.split(",") if s.strip()) or None
    return SyncOptions(
        assets_root=args.assets_root,
        data_only=args.data_only,
        assets_only=args.assets_only,
        keep_cache=args.keep_cache,
        force_cards=args.force_cards,
        force_refresh=args.force_refresh,
        interactive=args.interactive,
        browser_session=args.browser_session,
        skip_details=args.skip_details,
        skip_stage=args.skip_stage,
        limit_cards_per_set=args.limit_cards_per_set,
        set_filter=set_filter,
        fetch_delay_ms=args.fetch_delay,
        asset_concurrency=args.asset_concurrency,
        asset_delay_ms=args.asset_delay,
        cache_hours=args.cache_hours,
        fetch_retry=args.fetch_retry,
        fetch_cooldown_ms=args.fetch_cooldown,
    )


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
    if log_file:
        logger.add(
            log_file,
            level="INFO",
            format=LOG_FILE_FORMAT,
            encoding="utf-8",
            rotation="10 MB",
        )


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_file)
    options = options_from_args(args)

    try:
        await run_sync(options)
    except SyncError as e:
        logger.error(f"同步失敗: {e}")
        return 1
    logger.info("所有作業完成")
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
