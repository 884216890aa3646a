import asyncio
import os
from io import BytesIO
from pathlib import Path
from typing import Awaitable, Callable, NamedTuple, Optional, Sequence, TypeVar

from loguru import logger
from PIL import Image

from constants import CARD_JPEG_QUALITY, PNG_COMPRESS_LEVEL
from context import CategoryStats, RunContext
from errors import FetchError
from fetcher import SourceClient
from progress import ProgressEvent

RARITY_ICONS = "rarity-icons"
TYPE_ICONS = "type-icons"
SET_ART = "set-art"
CARDS = "cards"

T = TypeVar("T")


class AssetTask(NamedTuple):
    url: str
    dest: Path


def encode_card_jpeg(data: bytes, quality: int = CARD_JPEG_QUALITY) -> bytes:
    """卡圖：透明部分鋪白底後轉成 JPEG"""
    with Image.open(BytesIO(data)) as img:
        img.load()
        if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
            rgba = img.convert("RGBA")
            flat = Image.new("RGB", rgba.size, (255, 255, 255))
            flat.paste(rgba, mask=rgba.getchannel("A"))
        else:
            flat = img.convert("RGB")
    out = BytesIO()
    flat.save(out, format="JPEG", quality=quality, optimize=True)
    return out.getvalue()


def encode_png(data: bytes) -> bytes:
    """Logo、卡包、圖示：重新壓縮成 PNG"""
    with Image.open(BytesIO(data)) as img:
        img.load()
        if img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
            img = img.convert("RGBA")
        out = BytesIO()
        img.save(out, format="PNG", optimize=True, compress_level=PNG_COMPRESS_LEVEL)
    return out.getvalue()


def write_atomic(dest: Path, data: bytes) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_suffix(dest.suffix + ".tmp")
    try:
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, dest)
    finally:
        if tmp.exists():
            tmp.unlink()


async def run_concurrent(
    items: Sequence[T],
    concurrency: int,
    handler: Callable[[T, int], Awaitable[None]],
) -> None:
    """固定數量的 worker 從同一個游標取工作"""
    total = len(items)
    if total == 0:
        return
    cursor = 0

    async def worker() -> None:
        nonlocal cursor
        while cursor < total:
            index = cursor
            cursor += 1
            await handler(items[index], index)

    worker_count = max(1, min(concurrency, total))
    await asyncio.gather(*(worker() for _ in range(worker_count)))


class AssetDownloader:
    """批量下載圖片：已存在就跳過、404 記為略過、失敗只計數不中斷"""

    def __init__(self, context: RunContext, source: SourceClient):
        self.context = context
        self.source = source

    def _encoder(self, category: str) -> Callable[[bytes], bytes]:
        return encode_card_jpeg if category == CARDS else encode_png

    def _emit(self, kind: str, label: str, stats: CategoryStats) -> None:
        self.context.observer(
            ProgressEvent(
                kind=kind,
                label=label,
                category=stats.category,
                set_id=stats.set_id,
                current=stats.done,
                total=stats.total,
                ok=stats.ok,
                skipped=stats.skipped,
                not_found=stats.not_found,
                failed=stats.failed,
            )
        )

    async def download_batch(
        self,
        tasks: Sequence[AssetTask],
        category: str,
        set_id: Optional[str] = None,
        force: bool = False,
    ) -> CategoryStats:
        options = self.context.options
        # --force-cards 只對卡圖有效
        force = force and category == CARDS
        stats = CategoryStats(category=category, set_id=set_id, total=len(tasks))
        label = f"{set_id} {category}" if set_id else category
        started = self.context.clock()
        encode = self._encoder(category)
        delay = options.asset_delay_ms / 1000

        self._emit("start", label, stats)

        async def handle(task: AssetTask, index: int) -> None:
            await self._download_one(task, encode, force, delay, stats)
            self._emit("item", label, stats)

        await run_concurrent(tasks, options.asset_concurrency, handle)

        stats.elapsed = self.context.clock() - started
        self.context.counters.stats(category, set_id).merge(stats)
        self._emit("done", label, stats)
        logger.info(
            f"{label}: 完成 {stats.ok}，略過 {stats.skipped}，404 {stats.not_found}，失敗 {stats.failed}"
        )
        return stats

    async def _download_one(
        self,
        task: AssetTask,
        encode: Callable[[bytes], bytes],
        force: bool,
        delay: float,
        stats: CategoryStats,
    ) -> None:
        if task.dest.exists() and not force:
            stats.skipped += 1
            return
        if not task.url:
            stats.failed += 1
            return

        try:
            data = await self.source.fetch_binary(task.url, delay=delay)
        except FetchError as e:
            logger.warning(f"下載失敗 {task.url}: {e}")
            stats.failed += 1
            return
        if data is None:
            stats.not_found += 1
            return

        try:
            encoded = await asyncio.to_thread(encode, data)
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            logger.warning(f"圖片轉檔失敗 {task.url}: {e}")
            stats.failed += 1
            return

        try:
            await asyncio.to_thread(write_atomic, task.dest, encoded)
        except OSError as e:
            logger.warning(f"寫入失敗 {task.dest}: {e}")
            stats.failed += 1
            return
        stats.ok += 1
