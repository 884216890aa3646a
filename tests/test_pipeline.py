"""End-to-end tests for the sync pipeline against a mocked source site."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

import main as sync_main
from conftest import CATALOG_HTML, card_detail_page, card_row
from constants import CATALOG_URL, RARITY_SYMBOLS, SOURCE_BASE, TYPE_ICON_SOURCE
from context import AssetPaths, SyncOptions
from downloader import CARDS, RARITY_ICONS, SET_ART, TYPE_ICONS
from errors import CatalogError
from fetcher import SourceClient
from main import PocketDexSync, run_sync
from models import ExStatus, ManualSets, PackInfo, Rarity
from normalize import normalize_card_stub
from progress import RecordingObserver
from writer import OutputWriter

SINGLE_SET_CATALOG = '<html><body><a href="/tcgpocket/geneticapex/">Genetic Apex</a></body></html>'
GENETIC_APEX_URL = f"{SOURCE_BASE}/tcgpocket/geneticapex/"
MYTHICAL_ISLAND_URL = f"{SOURCE_BASE}/tcgpocket/mythicalisland/"
MYTHICAL_ISLAND_HTML = "<h2>Card List</h2><table>" + card_row("mythicalisland", 1, "Celebi ex", "star1") + "</table>"
DETAIL_PAGE_RE = r"/tcgpocket/[a-z]+/\d{3}\.shtml$"


def detail_page(request: httpx.Request) -> httpx.Response:
    number = int(request.url.path.rsplit("/", 1)[-1].split(".")[0])
    return httpx.Response(200, text=card_detail_page(f"Card {number}"))


def make_options(assets_root, **overrides) -> SyncOptions:
    values = {
        "assets_root": assets_root,
        "fetch_delay_ms": 0,
        "asset_delay_ms": 0,
        "fetch_cooldown_ms": 0,
    }
    values.update(overrides)
    return SyncOptions(**values)


def read(path) -> dict:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def site(png_bytes: bytes, set_page_html: str):
    with respx.mock(assert_all_called=False) as router:
        router.get(CATALOG_URL, name="catalog").mock(
            return_value=httpx.Response(200, text=SINGLE_SET_CATALOG)
        )
        router.get(GENETIC_APEX_URL, name="geneticapex").mock(
            return_value=httpx.Response(200, text=set_page_html)
        )
        router.get(MYTHICAL_ISLAND_URL, name="mythicalisland").mock(
            return_value=httpx.Response(200, text=MYTHICAL_ISLAND_HTML)
        )
        router.get(url__regex=DETAIL_PAGE_RE, name="details").mock(side_effect=detail_page)
        router.get(url__regex=r"\.(?:png|jpg)$", name="images").mock(
            return_value=httpx.Response(200, content=png_bytes)
        )
        yield router


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


class TestDataSync:
    @pytest.mark.asyncio
    async def test_end_to_end_data_only(self, site, assets_root) -> None:
        context = await run_sync(make_options(assets_root, data_only=True), observer=RecordingObserver())
        paths = context.paths

        payload = read(paths.set_json("A1"))
        assert payload["set"] == "A1"
        assert [c["name"] for c in payload["cards"]] == ["Bulbasaur", "Ivysaur", "Venusaur ex"]

        venusaur = normalize_card_stub(payload["cards"][2], "A1")
        assert venusaur.id == "A1-003"
        assert venusaur.rarity is Rarity.DOUBLE_RARE
        assert venusaur.ex_status is ExStatus.EX

        index = read(paths.index_file)
        (info,) = index["sets"]
        assert info["id"] == "A1"
        assert info["name"] == "Genetic Apex"
        assert info["totalCards"] == 3
        assert [p["id"] for p in info["packs"]] == ["mewtwo", "charizard"]

        assert site["images"].call_count == 0
        assert not paths.cards_dir.exists()
        assert context.counters.sets_written == 1
        assert context.counters.cards_processed == 3

    @pytest.mark.asyncio
    async def test_cache_purged_by_default(self, site, assets_root) -> None:
        context = await run_sync(make_options(assets_root, data_only=True), observer=RecordingObserver())
        assert not context.paths.cache_dir.exists()

    @pytest.mark.asyncio
    async def test_keep_cache(self, site, assets_root) -> None:
        context = await run_sync(
            make_options(assets_root, data_only=True, keep_cache=True), observer=RecordingObserver()
        )
        assert any(context.paths.cache_dir.iterdir())

    @pytest.mark.asyncio
    async def test_limit_cards_per_set(self, site, assets_root) -> None:
        context = await run_sync(
            make_options(assets_root, limit_cards_per_set=2), observer=RecordingObserver()
        )
        assert len(read(context.paths.set_json("A1"))["cards"]) == 2
        assert read(context.paths.index_file)["sets"][0]["totalCards"] == 2
        assert context.counters.category_totals(CARDS).total == 2

    @pytest.mark.asyncio
    async def test_set_filter(self, site, assets_root) -> None:
        site["catalog"].mock(return_value=httpx.Response(200, text=CATALOG_HTML))
        context = await run_sync(
            make_options(assets_root, data_only=True, set_filter=frozenset({"A1a"})),
            observer=RecordingObserver(),
        )
        assert site["geneticapex"].call_count == 0
        assert site["mythicalisland"].call_count == 1
        assert [s["id"] for s in read(context.paths.index_file)["sets"]] == ["A1a"]

    @pytest.mark.asyncio
    async def test_failed_set_page_does_not_stop_run(self, site, assets_root) -> None:
        site["catalog"].mock(return_value=httpx.Response(200, text=CATALOG_HTML))
        site["mythicalisland"].mock(return_value=httpx.Response(404))
        context = await run_sync(make_options(assets_root, data_only=True), observer=RecordingObserver())

        assert context.counters.sets_failed == 1
        assert context.counters.sets_written == 1
        assert [s["id"] for s in read(context.paths.index_file)["sets"]] == ["A1"]

    @pytest.mark.asyncio
    async def test_manual_pack_list(self, site, assets_root) -> None:
        paths = AssetPaths(assets_root)
        manual = ManualSets(packs={"A1": [PackInfo(id="mewtwo", name="Genetic Apex: Mewtwo")]})
        OutputWriter(paths).save_manual(manual)

        await run_sync(make_options(assets_root, data_only=True), observer=RecordingObserver())
        (pack,) = read(paths.index_file)["sets"][0]["packs"]
        assert pack == {
            "id": "mewtwo",
            "name": "Genetic Apex: Mewtwo",
            "imageUrl": f"{SOURCE_BASE}/tcgpocket/geneticapex/mewtwo.png",
        }

    @pytest.mark.asyncio
    async def test_browser_session_cookies(self, site, assets_root, monkeypatch) -> None:
        requested: list[str] = []

        async def fake_cookies(url: str) -> dict[str, str]:
            requested.append(url)
            return {"cf_clearance": "token"}

        monkeypatch.setattr(sync_main, "fetch_session_cookies", fake_cookies)
        await run_sync(
            make_options(assets_root, data_only=True, browser_session=True), observer=RecordingObserver()
        )
        assert requested == [CATALOG_URL]

    @pytest.mark.asyncio
    async def test_card_details_recorded(self, site, assets_root) -> None:
        context = await run_sync(make_options(assets_root, data_only=True), observer=RecordingObserver())
        cards = read(context.paths.set_json("A1"))["cards"]

        assert site["details"].call_count == 3
        assert context.counters.details_fetched == 3
        bulbasaur = cards[0]
        assert bulbasaur["stage"] == "Basic"
        assert bulbasaur["attacks"] == [
            {"name": "Vine Whip", "cost": [{"type": "Grass", "count": 1}, {"type": "Colorless", "count": 1}]}
        ]
        assert bulbasaur["illustrator"] == "Narumi Sato"
        assert bulbasaur["craftCost"] == 35
        assert bulbasaur["boosterPacks"] == ["mewtwo"]

        card = normalize_card_stub(bulbasaur, "A1")
        assert card.stage == "Basic"
        assert card.booster_packs == ["mewtwo"]

    @pytest.mark.asyncio
    async def test_skip_details(self, site, assets_root) -> None:
        context = await run_sync(
            make_options(assets_root, data_only=True, skip_details=True), observer=RecordingObserver()
        )
        assert site["details"].call_count == 0
        cards = read(context.paths.set_json("A1"))["cards"]
        assert all("stage" not in c and "illustrator" not in c for c in cards)

    @pytest.mark.asyncio
    async def test_skip_stage(self, site, assets_root) -> None:
        context = await run_sync(
            make_options(assets_root, data_only=True, skip_stage=True), observer=RecordingObserver()
        )
        bulbasaur = read(context.paths.set_json("A1"))["cards"][0]
        assert "stage" not in bulbasaur
        assert bulbasaur["illustrator"] == "Narumi Sato"

    @pytest.mark.asyncio
    async def test_failed_detail_page_keeps_card(self, site, assets_root) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/002.shtml"):
                return httpx.Response(404)
            return detail_page(request)

        site["details"].mock(side_effect=respond)
        context = await run_sync(make_options(assets_root, data_only=True), observer=RecordingObserver())
        cards = read(context.paths.set_json("A1"))["cards"]

        assert [c["name"] for c in cards] == ["Bulbasaur", "Ivysaur", "Venusaur ex"]
        assert "illustrator" not in cards[1]
        assert cards[2]["illustrator"] == "Narumi Sato"
        assert (context.counters.details_fetched, context.counters.details_failed) == (2, 1)
        assert context.counters.sets_written == 1

    @pytest.mark.asyncio
    async def test_detail_pages_follow_limit(self, site, assets_root) -> None:
        await run_sync(
            make_options(assets_root, data_only=True, limit_cards_per_set=1), observer=RecordingObserver()
        )
        assert [call.request.url.path for call in site["details"].calls] == ["/tcgpocket/geneticapex/001.shtml"]


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


class JsonBeforeCards:
    """Records whether the set JSON existed when each card batch started."""

    def __init__(self, paths: AssetPaths):
        self.paths = paths
        self.seen: list[bool] = []

    def __call__(self, event) -> None:
        if event.kind == "start" and event.category == CARDS:
            self.seen.append(self.paths.set_json(event.set_id).is_file())


class TestAssetSync:
    @pytest.mark.asyncio
    async def test_full_run_downloads_everything(self, site, assets_root) -> None:
        context = await run_sync(make_options(assets_root), observer=RecordingObserver())
        paths = context.paths

        for symbol in RARITY_SYMBOLS:
            assert (paths.rarity_icons_dir / f"{symbol}.png").is_file()
        for energy in TYPE_ICON_SOURCE:
            assert (paths.type_icons_dir / f"{energy}.png").is_file()
        assert paths.set_logo("A1").is_file()
        assert paths.pack_art("A1", "mewtwo").is_file()
        assert paths.pack_art("A1", "charizard").is_file()
        for number in (1, 2, 3):
            assert paths.card_image("A1", number).read_bytes()[:2] == b"\xff\xd8"

        counters = context.counters
        assert counters.category_totals(RARITY_ICONS).ok == len(RARITY_SYMBOLS)
        assert counters.category_totals(TYPE_ICONS).ok == len(TYPE_ICON_SOURCE)
        assert counters.stats(SET_ART, "A1").total == 3
        assert counters.stats(CARDS, "A1").ok == 3

    @pytest.mark.asyncio
    async def test_lightning_icon_fetched_from_electric(self, site, assets_root) -> None:
        await run_sync(make_options(assets_root), observer=RecordingObserver())
        urls = {str(call.request.url) for call in site["images"].calls}
        assert f"{SOURCE_BASE}/tcgpocket/image/electric.png" in urls
        assert f"{SOURCE_BASE}/tcgpocket/image/lightning.png" not in urls

    @pytest.mark.asyncio
    async def test_json_written_before_card_images(self, site, assets_root) -> None:
        observer = JsonBeforeCards(AssetPaths(assets_root))
        await run_sync(make_options(assets_root), observer=observer)
        assert observer.seen == [True]

    @pytest.mark.asyncio
    async def test_second_run_skips_existing_files(self, site, assets_root) -> None:
        await run_sync(make_options(assets_root), observer=RecordingObserver())
        calls_after_first = site["images"].call_count

        context = await run_sync(make_options(assets_root), observer=RecordingObserver())
        assert site["images"].call_count == calls_after_first
        assert context.counters.stats(CARDS, "A1").skipped == 3

    @pytest.mark.asyncio
    async def test_force_cards_refetches_only_cards(self, site, assets_root) -> None:
        await run_sync(make_options(assets_root), observer=RecordingObserver())
        calls_after_first = site["images"].call_count

        context = await run_sync(make_options(assets_root, force_cards=True), observer=RecordingObserver())
        assert site["images"].call_count == calls_after_first + 3
        assert context.counters.stats(CARDS, "A1").ok == 3
        assert context.counters.stats(SET_ART, "A1").skipped == 3

    @pytest.mark.asyncio
    async def test_missing_image_is_not_found(self, site, assets_root, png_bytes: bytes) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/tcgpocket/geneticapex/2.jpg":
                return httpx.Response(404)
            return httpx.Response(200, content=png_bytes)

        site["images"].mock(side_effect=respond)
        context = await run_sync(make_options(assets_root), observer=RecordingObserver())
        stats = context.counters.stats(CARDS, "A1")
        assert (stats.ok, stats.not_found, stats.failed) == (2, 1, 0)

    @pytest.mark.asyncio
    async def test_assets_only_reuses_saved_json(self, site, assets_root) -> None:
        await run_sync(make_options(assets_root, data_only=True), observer=RecordingObserver())
        index_before = read(AssetPaths(assets_root).index_file)

        context = await run_sync(make_options(assets_root, assets_only=True), observer=RecordingObserver())
        assert site["catalog"].call_count == 1
        assert context.counters.stats(CARDS, "A1").ok == 3
        assert context.paths.pack_art("A1", "mewtwo").is_file()
        assert read(context.paths.index_file) == index_before


# ---------------------------------------------------------------------------
# Fatal errors
# ---------------------------------------------------------------------------


class TestFatalErrors:
    @pytest.mark.asyncio
    async def test_catalog_unreachable(self, site, assets_root) -> None:
        site["catalog"].mock(return_value=httpx.Response(404))
        with pytest.raises(CatalogError):
            await run_sync(make_options(assets_root, data_only=True), observer=RecordingObserver())

    @pytest.mark.asyncio
    async def test_no_sets_selected(self, site, assets_root) -> None:
        with pytest.raises(CatalogError):
            await run_sync(
                make_options(assets_root, set_filter=frozenset({"Z9"})), observer=RecordingObserver()
            )

    @pytest.mark.asyncio
    async def test_assets_only_without_index(self, site, assets_root) -> None:
        with pytest.raises(CatalogError):
            await run_sync(make_options(assets_root, assets_only=True), observer=RecordingObserver())

    @pytest.mark.asyncio
    async def test_main_exit_status(self, site, assets_root) -> None:
        site["catalog"].mock(return_value=httpx.Response(503))
        status = await sync_main.main(
            ["--data-only", "--assets-root", str(assets_root), "--fetch-delay", "0", "--fetch-retry", "0"]
        )
        assert status == 1

    @pytest.mark.asyncio
    async def test_main_success(self, site, assets_root) -> None:
        status = await sync_main.main(
            ["--data-only", "--assets-root", str(assets_root), "--fetch-delay", "0"]
        )
        assert status == 0
        assert AssetPaths(assets_root).set_json("A1").is_file()


class TestResolvePacks:
    def test_extracted_packs_used_without_override(self, make_context) -> None:
        context = make_context()
        sync = PocketDexSync(context, source=SourceClient(context))
        packs = [PackInfo(id="pikachu", name="Pikachu", image_url="https://x/p.png")]
        assert sync.resolve_packs("A1", packs, ManualSets()) == packs

    def test_override_without_match_keeps_pack(self, make_context) -> None:
        context = make_context()
        sync = PocketDexSync(context, source=SourceClient(context))
        manual = ManualSets(packs={"A1": [PackInfo(id="mew", name="Mew")]})
        (pack,) = sync.resolve_packs("A1", [], manual)
        assert pack.id == "mew"
        assert pack.image_url is None
