"""
PocketDex Sync - Shared pytest Fixtures

- RunContext factory pointed at a temporary assets root
- fake sleep that records pacing instead of waiting
- small generated images for the download tests
- synthetic catalog / set pages
"""

from __future__ import annotations

from io import BytesIO

import pytest
from PIL import Image

from context import RunContext, SyncOptions
from progress import RecordingObserver


# ---------------------------------------------------------------------------
# Run context
# ---------------------------------------------------------------------------


@pytest.fixture
def assets_root(tmp_path):
    return tmp_path / "assets"


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_context(assets_root, sleeps):
    """Build a RunContext with no real waiting; keyword arguments override SyncOptions."""

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    def factory(**overrides) -> RunContext:
        values = {
            "assets_root": assets_root,
            "fetch_delay_ms": 0,
            "asset_delay_ms": 0,
            "fetch_cooldown_ms": 0,
        }
        values.update(overrides)
        return RunContext(SyncOptions(**values), observer=RecordingObserver(), sleep=fake_sleep)

    return factory


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


@pytest.fixture
def png_bytes() -> bytes:
    img = Image.new("RGBA", (8, 8), (200, 30, 30, 255))
    out = BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


@pytest.fixture
def transparent_png_bytes() -> bytes:
    img = Image.new("RGBA", (8, 8), (0, 0, 0, 0))
    out = BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


# ---------------------------------------------------------------------------
# Source pages
# ---------------------------------------------------------------------------

CATALOG_HTML = """
<html><body>
<table class="dextable">
<tr><td><a href="/tcgpocket/">Home</a></td></tr>
<tr>
  <td><a href="/tcgpocket/geneticapex/"><img src="/tcgpocket/logo/geneticapex.png"></a></td>
  <td><a href="/tcgpocket/geneticapex/">Genetic Apex</a></td>
  <td>286</td>
</tr>
<tr>
  <td><a href="/tcgpocket/mysteryset/">Mystery Set</a></td>
  <td>50</td>
</tr>
<tr>
  <td><a href="https://www.serebii.net/tcgpocket/mythicalisland/">Mythical Island</a></td>
  <td>86</td>
</tr>
<tr><td><a href="/tcgpocket/decks/">Decks</a></td></tr>
<tr><td><a href="/tcgpocket/news/">October 30, 2024</a></td></tr>
</table>
</body></html>
"""


def card_row(slug: str, number: int, name: str, rarity: str, details: str = "") -> str:
    return (
        "<tr>"
        f'<td><a href="/tcgpocket/{slug}/{number:03d}.shtml">'
        f'<img src="/tcgpocket/{slug}/th/{number}.jpg"></a></td>'
        f'<td><a href="/tcgpocket/{slug}/{number:03d}.shtml">{name}</a></td>'
        f'<td><img src="/tcgpocket/image/{rarity}.png"></td>'
        f"{details}"
        "</tr>\n"
    )


def pokemon_details(energy: str, hp: int, weakness: str, retreat: int) -> str:
    icon = '<img src="/tcgpocket/image/{}.png">'
    return (
        f"<td>{icon.format(energy)}</td>"
        f"<td>{hp} HP</td>"
        f"<td>Attack {icon.format(energy)}{icon.format('colorless')} 40</td>"
        f"<td>Weakness {icon.format(weakness)} +20</td>"
        f"<td>Retreat {icon.format('colorless') * retreat}</td>"
    )


SET_PAGE_HTML = (
    "<html><body>\n"
    "<h2>Booster Pack List</h2>\n"
    "<table><tr>"
    '<td><a href="/tcgpocket/geneticapex/mewtwo.shtml">'
    '<img src="/tcgpocket/geneticapex/mewtwo.png" alt="Mewtwo"></a></td>'
    '<td><a href="/tcgpocket/geneticapex/charizard.shtml">'
    '<img src="/tcgpocket/geneticapex/charizard.png"><br>Charizard</a></td>'
    "</tr></table>\n"
    "<h2>Card List</h2>\n"
    "<table>\n"
    + card_row("geneticapex", 1, "Bulbasaur", "diamond1", pokemon_details("grass", 70, "fire", 1))
    + card_row("geneticapex", 2, "Ivysaur", "diamond2", pokemon_details("grass", 90, "fire", 2))
    + card_row("geneticapex", 3, "Venusaur ex", "star1", pokemon_details("grass", 190, "fire", 3))
    + "</table>\n"
    "<h2>Themed Collections</h2>\n"
    "<table>\n"
    + card_row("geneticapex", 2, "Ivysaur", "crown")
    + card_row("geneticapex", 4, "Mew", "diamond3")
    + "</table>\n"
    "</body></html>\n"
)


def card_detail_page(
    name: str,
    stage: str = "Basic",
    attacks: tuple = (("Vine Whip", ("grass", "colorless")),),
    illustrator: str = "Narumi Sato",
    packs: tuple = ("mewtwo",),
    craft_cost: int = 35,
) -> str:
    icon = '<img src="/tcgpocket/image/{}.png">'
    attack_rows = "".join(
        f"<tr><td>{''.join(icon.format(e) for e in cost)}</td>"
        f'<td><span class="main"><b>{attack}</b></span><br>Deal some damage.</td><td>40</td></tr>'
        for attack, cost in attacks
    )
    pack_links = "".join(
        f'<a href="/tcgpocket/geneticapex/{p}.shtml">{p.title()} pack</a>' for p in packs
    )
    return (
        "<html><body>\n"
        f"<table><tr><td>{icon.format('grass')}</td><td>{name}</td><td>70 HP</td></tr>\n"
        f"<tr><td>{stage}</td></tr>\n"
        f"{attack_rows}\n"
        "<tr><td>Weakness</td><td>Retreat</td></tr>\n"
        f"<tr><td>{icon.format('fire')} +20</td><td>{icon.format('colorless')}</td></tr>\n"
        "</table>\n"
        f'<table><tr><td>Illustration:</td><td><a href="/tcgpocket/illustrator/x.shtml">{illustrator}</a></td></tr>\n'
        f"<tr><td>Cost to craft: {craft_cost} Pack Points</td></tr></table>\n"
        f"<h3>Booster Packs</h3><table><tr><td>{pack_links}</td></tr></table>\n"
        "</body></html>\n"
    )


@pytest.fixture
def catalog_html() -> str:
    return CATALOG_HTML


@pytest.fixture
def set_page_html() -> str:
    return SET_PAGE_HTML
