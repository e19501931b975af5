import math
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from playwright.async_api import Page, async_playwright

from pagedpdf.page_data import (
    PAGE_PROGRESSION_SCRIPT,
    PAGE_SIZE_SCRIPT,
    PX_TO_PT,
    TOC_SCRIPT,
    VIEWER_CORE_VERSION_SCRIPT,
    PageSizeData,
    TOCItem,
    extract_document_data,
    load_metadata,
    load_page_size_data,
    load_toc,
    read_page_progression,
    read_viewer_core_version,
)
from tests.utils_browser import make_page

VIEWER_DOM = """
<div id="vivliostyle-menu_settings"><span class="version">Vivliostyle Core Version: 2.30.1 (2024-06-01)</span></div>
<div id="vivliostyle-viewer-viewport" data-vivliostyle-page-progression="{progression}">
  <div><div>
    <div data-vivliostyle-page-container style="width: 800px; height: 1000px"></div>
    <div data-vivliostyle-page-container style="width: 816px; height: 1056px">
      <div data-vivliostyle-bleed-box style="left: 12px; padding-left: 16px"></div>
    </div>
  </div></div>
</div>
"""

FAKE_CORE_VIEWER = """
() => { window.coreViewer = {
  listeners: [],
  tocShown: false,
  toggles: [],
  addListener(type, cb) { this.listeners.push(cb); },
  removeListener(type, cb) { this.listeners = this.listeners.filter((l) => l !== cb); },
  getMetadata() { return {'http://purl.org/dc/terms/title': [{v: 'Book'}]}; },
  getTOC() { return [{title: 'Chapter', id: 'ch1', children: []}]; },
  showTOC(show) {
    this.toggles.push(show);
    this.tocShown = show;
    if (show) {
      setTimeout(() => {
        this.listeners.slice().forEach((l) => l({a: 'render'}));
        this.listeners.slice().forEach((l) => l({a: 'toc'}));
      }, 10);
    }
  },
}; }
"""


def test_toc_item_from_viewer():
    item = TOCItem.from_viewer(
        {
            "title": "Part 1",
            "id": "part1",
            "children": [{"title": "Chapter 1", "id": "ch1", "children": None}],
        }
    )
    assert item == TOCItem("Part 1", "part1", [TOCItem("Chapter 1", "ch1", [])])


def test_page_size_data_without_bleed():
    size = PageSizeData.from_viewer({"mediaWidth": 600, "mediaHeight": 750, "bleedOffset": None, "bleedSize": None})
    assert size.media_width == 600
    assert size.media_height == 750
    assert math.isnan(size.bleed_offset)
    assert math.isnan(size.bleed_size)
    assert not size.has_bleed


def test_page_size_data_with_bleed():
    size = PageSizeData.from_viewer({"mediaWidth": 612, "mediaHeight": 792, "bleedOffset": 9, "bleedSize": 12})
    assert size.has_bleed
    assert size.bleed_offset == 9


@pytest.mark.asyncio
@pytest.mark.parametrize(("raw", "expected"), [("rtl", "rtl"), ("ltr", "ltr"), ("ttb", "ltr"), (None, "ltr")])
async def test_read_page_progression(raw, expected):
    page = make_page()
    page.evaluate.return_value = raw
    assert await read_page_progression(page) == expected
    page.evaluate.assert_awaited_once_with(PAGE_PROGRESSION_SCRIPT)


@pytest.mark.asyncio
async def test_read_viewer_core_version():
    page = make_page()
    page.evaluate.return_value = "2.30.1"
    assert await read_viewer_core_version(page) == "2.30.1"
    page.evaluate.assert_awaited_once_with(VIEWER_CORE_VERSION_SCRIPT)

    page.evaluate.return_value = ""
    assert await read_viewer_core_version(page) is None


@pytest.mark.asyncio
async def test_load_metadata_defaults_to_empty():
    page = make_page()
    page.evaluate.return_value = None
    assert await load_metadata(page) == {}


@pytest.mark.asyncio
async def test_load_toc():
    page = make_page()
    page.evaluate.return_value = [{"title": "Intro", "id": "intro", "children": []}]
    assert await load_toc(page) == [TOCItem("Intro", "intro", [])]
    page.evaluate.assert_awaited_once_with(TOC_SCRIPT)


@pytest.mark.asyncio
async def test_load_page_size_data_passes_conversion_factor():
    page = make_page()
    page.evaluate.return_value = [{"mediaWidth": 600, "mediaHeight": 750, "bleedOffset": None, "bleedSize": None}]
    sizes = await load_page_size_data(page)
    page.evaluate.assert_awaited_once_with(PAGE_SIZE_SCRIPT, PX_TO_PT)
    assert len(sizes) == 1
    assert not sizes[0].has_bleed


@pytest.mark.asyncio
async def test_extract_document_data_runs_protocols_in_order():
    page = make_page()
    page.evaluate.side_effect = [
        "rtl",
        "2.30.1",
        {"http://purl.org/dc/terms/title": [{"v": "Book"}]},
        [{"title": "Intro", "id": "intro", "children": []}],
        [{"mediaWidth": 600, "mediaHeight": 750, "bleedOffset": None, "bleedSize": None}],
    ]

    data = await extract_document_data(page)

    scripts = [call.args[0] for call in page.evaluate.await_args_list]
    assert scripts == [
        PAGE_PROGRESSION_SCRIPT,
        VIEWER_CORE_VERSION_SCRIPT,
        "() => window.coreViewer.getMetadata()",
        TOC_SCRIPT,
        PAGE_SIZE_SCRIPT,
    ]
    assert data.page_progression == "rtl"
    assert data.viewer_core_version == "2.30.1"
    assert data.metadata == {"http://purl.org/dc/terms/title": [{"v": "Book"}]}
    assert data.toc == [TOCItem("Intro", "intro", [])]
    assert len(data.page_size_data) == 1


@pytest_asyncio.fixture
async def chromium_page() -> AsyncGenerator[Page, None]:
    async with async_playwright() as playwright:
        if not Path(playwright.chromium.executable_path).is_file():
            pytest.skip("Chromium is not installed for Playwright")
        browser = await playwright.chromium.launch(headless=True)
        try:
            page = await browser.new_page()
            yield page
        finally:
            await browser.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("progression", ["rtl", "ltr"])
async def test_scripts_against_viewer_dom(chromium_page: Page, progression: str):
    await chromium_page.set_content(VIEWER_DOM.format(progression=progression))

    assert await read_page_progression(chromium_page) == progression
    assert await read_viewer_core_version(chromium_page) == "2.30.1"

    sizes = await load_page_size_data(chromium_page)
    assert len(sizes) == 2
    assert sizes[0].media_width == pytest.approx(600)
    assert sizes[0].media_height == pytest.approx(750)
    assert math.isnan(sizes[0].bleed_offset)
    assert math.isnan(sizes[0].bleed_size)
    assert sizes[1].media_width == pytest.approx(612)
    assert sizes[1].media_height == pytest.approx(792)
    assert sizes[1].bleed_offset == pytest.approx(9)
    assert sizes[1].bleed_size == pytest.approx(12)


@pytest.mark.asyncio
async def test_scripts_without_viewer_ui(chromium_page: Page):
    await chromium_page.set_content("<p>nothing here</p>")
    assert await read_page_progression(chromium_page) == "ltr"
    assert await read_viewer_core_version(chromium_page) is None
    assert await load_page_size_data(chromium_page) == []


@pytest.mark.asyncio
async def test_toc_round_trip_against_fake_viewer(chromium_page: Page):
    await chromium_page.set_content("<p>book</p>")
    await chromium_page.evaluate(FAKE_CORE_VIEWER)

    toc = await load_toc(chromium_page)

    assert toc == [TOCItem("Chapter", "ch1", [])]
    assert await chromium_page.evaluate("() => window.coreViewer.toggles") == [True, False]
    assert await chromium_page.evaluate("() => window.coreViewer.listeners.length") == 0
    assert await load_metadata(chromium_page) == {"http://purl.org/dc/terms/title": [{"v": "Book"}]}


@pytest.mark.asyncio
async def test_toc_panel_closed_for_empty_toc(chromium_page: Page):
    await chromium_page.set_content("<p>book</p>")
    await chromium_page.evaluate(FAKE_CORE_VIEWER)
    await chromium_page.evaluate("() => { window.coreViewer.getTOC = () => []; }")

    assert await load_toc(chromium_page) == []
    assert await chromium_page.evaluate("() => window.coreViewer.tocShown") is False


@pytest.mark.asyncio
async def test_unknown_progression_attribute_is_ltr(chromium_page: Page):
    await chromium_page.set_content(VIEWER_DOM.format(progression="ttb"))
    assert await read_page_progression(chromium_page) == "ltr"
