import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict

from constants import (
    DEFAULT_ASSET_CONCURRENCY,
    DEFAULT_ASSET_DELAY_MS,
    DEFAULT_CACHE_HOURS,
    DEFAULT_FETCH_COOLDOWN_MS,
    DEFAULT_FETCH_DELAY_MS,
    DEFAULT_FETCH_RETRY,
)
from progress import ProgressObserver, null_observer

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class SyncOptions(BaseModel):
    """單次執行的選項 (由命令列參數建立)"""

    model_config = ConfigDict(frozen=True)

    assets_root: Path = Path("assets")
    data_only: bool = False
    assets_only: bool = False
    keep_cache: bool = False
    force_cards: bool = False
    force_refresh: bool = False
    interactive: bool = False
    browser_session: bool = False
    skip_details: bool = False
    skip_stage: bool = False
    limit_cards_per_set: Optional[int] = None
    set_filter: Optional[frozenset[str]] = None
    fetch_delay_ms: int = DEFAULT_FETCH_DELAY_MS
    asset_concurrency: int = DEFAULT_ASSET_CONCURRENCY
    asset_delay_ms: int = DEFAULT_ASSET_DELAY_MS
    cache_hours: float = DEFAULT_CACHE_HOURS
    fetch_retry: int = DEFAULT_FETCH_RETRY
    fetch_cooldown_ms: int = DEFAULT_FETCH_COOLDOWN_MS


class AssetPaths:
    """輸出目錄結構"""

    def __init__(self, root: Path):
        self.root = root
        self.data_dir = root / "data"
        self.data_sets_dir = self.data_dir / "sets"
        self.index_file = self.data_dir / "index.json"
        self.manual_file = self.data_dir / "manual-sets.json"
        self.cards_dir = root / "cards"
        self.sets_dir = root / "sets"
        self.rarity_icons_dir = root / "icons" / "rarity"
        self.type_icons_dir = root / "icons" / "types"
        self.cache_dir = root / ".cache" / "serebii"

    def set_json(self, set_id: str) -> Path:
        return self.data_sets_dir / f"{set_id}.json"

    def card_image(self, set_id: str, number: int) -> Path:
        return self.cards_dir / set_id / f"{number:03d}.jpg"

    def set_logo(self, set_id: str) -> Path:
        return self.sets_dir / set_id / "logo.png"

    def pack_art(self, set_id: str, pack_id: str) -> Path:
        return self.sets_dir / set_id / f"pack_{pack_id}.png"


class RateLimiter:
    """所有請求共用的最小間隔"""

    def __init__(self, interval: float, clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep):
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self.last_request: Optional[float] = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            if self.last_request is not None:
                remaining = self.last_request + self.interval - self.clock()
                if remaining > 0:
                    await self.sleep(remaining)
            self.last_request = self.clock()


@dataclass
class CategoryStats:
    category: str
    set_id: Optional[str] = None
    ok: int = 0
    skipped: int = 0
    not_found: int = 0
    failed: int = 0
    total: int = 0
    elapsed: float = 0.0

    @property
    def done(self) -> int:
        return self.ok + self.skipped + self.not_found + self.failed

    def merge(self, other: "CategoryStats") -> None:
        self.ok += other.ok
        self.skipped += other.skipped
        self.not_found += other.not_found
        self.failed += other.failed
        self.total += other.total
        self.elapsed += other.elapsed


@dataclass
class RunCounters:
    assets: dict[tuple[Optional[str], str], CategoryStats] = field(default_factory=dict)
    cards_processed: int = 0
    sets_written: int = 0
    sets_failed: int = 0
    details_fetched: int = 0
    details_failed: int = 0

    def stats(self, category: str, set_id: Optional[str] = None) -> CategoryStats:
        key = (set_id, category)
        if key not in self.assets:
            self.assets[key] = CategoryStats(category=category, set_id=set_id)
        return self.assets[key]

    def category_totals(self, category: str) -> CategoryStats:
        totals = CategoryStats(category=category)
        for (_, name), stats in self.assets.items():
            if name == category:
                totals.merge(stats)
        return totals

    def overall(self) -> CategoryStats:
        totals = CategoryStats(category="all")
        for stats in self.assets.values():
            totals.merge(stats)
        return totals


class RunContext:
    """一次同步所需的共用狀態，依序傳給每個階段"""

    def __init__(
        self,
        options: SyncOptions,
        observer: ProgressObserver = null_observer,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.options = options
        self.paths = AssetPaths(options.assets_root)
        self.observer = observer
        self.clock = clock
        self.sleep = sleep
        self.limiter = RateLimiter(options.fetch_delay_ms / 1000, clock=clock, sleep=sleep)
        self.counters = RunCounters()
