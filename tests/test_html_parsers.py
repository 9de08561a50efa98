"""
tests/test_html_parsers.py

Pytest unit tests for HTMLParsingLayer.

Coverage
--------
- text / attr / list / join / split field kinds
- Missing fields map to None
- Listing link and page-count extraction
- Block marker detection
"""

from __future__ import annotations

import pytest

from harvester.domain.harvest import FieldSelector
from harvester.scraping.parsing import HTMLParsingLayer

DETAIL_HTML = """
<html><body>
  <h1 class="title">  Apartment   for sale  </h1>
  <span class="price">2,500,000 EGP</span>
  <div class="advertiser"><a href=" /ar/agents/77 ">Nile Homes</a></div>
  <span class="info">Apartment . 3 days ago</span>
  <div class="description">
    <span>First line</span>
    <span class="text-link">Show more</span>
    <span>Second line</span>
  </div>
  <ul class="facts"><li>3 rooms</li><li> </li><li>2 baths</li></ul>
</body></html>
"""

SEARCH_HTML = """
<html><body>
  <a class="card" href="/ar/listing/1">One</a>
  <a class="card" href="/ar/listing/2">Two</a>
  <a class="card" href="/ar/listing/1">One again</a>
  <a class="card">No href</a>
  <nav aria-label="pagination"><a>1</a><a>2</a><a>...</a><a>37</a><a>Next</a></nav>
</body></html>
"""


@pytest.fixture()
def detail():
    return HTMLParsingLayer.parse(DETAIL_HTML)


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------


class TestExtractFields:
    def test_text_is_whitespace_normalized(self, detail) -> None:
        fields = HTMLParsingLayer.extract_fields(
            soup=detail,
            selectors=[FieldSelector(name="title", selector="h1.title")],
        )

        assert fields == {"title": "Apartment for sale"}

    def test_attr(self, detail) -> None:
        fields = HTMLParsingLayer.extract_fields(
            soup=detail,
            selectors=[
                FieldSelector(name="advertiserLink", selector="div.advertiser a", kind="attr", attribute="href")
            ],
        )

        assert fields["advertiserLink"] == "/ar/agents/77"

    def test_list_skips_blank_items(self, detail) -> None:
        fields = HTMLParsingLayer.extract_fields(
            soup=detail,
            selectors=[FieldSelector(name="facts", selector="ul.facts li", kind="list")],
        )

        assert fields["facts"] == ["3 rooms", "2 baths"]

    def test_join_excludes_class(self, detail) -> None:
        fields = HTMLParsingLayer.extract_fields(
            soup=detail,
            selectors=[
                FieldSelector(
                    name="description",
                    selector="div.description span",
                    kind="join",
                    exclude_class="text-link",
                    separator="\n",
                )
            ],
        )

        assert fields["description"] == "First line\nSecond line"

    def test_split_into_named_parts(self, detail) -> None:
        fields = HTMLParsingLayer.extract_fields(
            soup=detail,
            selectors=[
                FieldSelector(
                    name="info",
                    selector="span.info",
                    kind="split",
                    separator=".",
                    split_into=("buildingType", "adDate", "extra"),
                )
            ],
        )

        assert fields == {"buildingType": "Apartment", "adDate": "3 days ago", "extra": None}

    def test_missing_fields_are_none(self, detail) -> None:
        fields = HTMLParsingLayer.extract_fields(
            soup=detail,
            selectors=[
                FieldSelector(name="area", selector="p.area"),
                FieldSelector(name="notes", selector="p.notes", kind="join"),
                FieldSelector(name="info", selector="p.info", kind="split", split_into=("a", "b")),
            ],
        )

        assert fields == {"area": None, "notes": None, "a": None, "b": None}

    def test_unknown_kind_raises(self, detail) -> None:
        with pytest.raises(ValueError):
            HTMLParsingLayer.extract_fields(
                soup=detail,
                selectors=[FieldSelector(name="x", selector="h1", kind="table")],
            )


# ---------------------------------------------------------------------------
# Search pages
# ---------------------------------------------------------------------------


class TestSearchPage:
    def test_links_are_unique_and_require_href(self) -> None:
        soup = HTMLParsingLayer.parse(SEARCH_HTML)

        links = HTMLParsingLayer.extract_links(soup=soup, selector="a.card")

        assert links == {"/ar/listing/1", "/ar/listing/2"}

    def test_page_count_is_highest_number(self) -> None:
        soup = HTMLParsingLayer.parse(SEARCH_HTML)

        count = HTMLParsingLayer.extract_page_count(soup=soup, selector="nav[aria-label='pagination'] a")

        assert count == 37

    def test_page_count_without_widget(self) -> None:
        soup = HTMLParsingLayer.parse("<html><body></body></html>")

        assert HTMLParsingLayer.extract_page_count(soup=soup, selector="nav a") is None

    def test_contains_marker(self) -> None:
        html = "<title>Access Denied</title>"

        assert HTMLParsingLayer.contains_marker(html=html, markers=("", "Access Denied")) == "Access Denied"
        assert HTMLParsingLayer.contains_marker(html=html, markers=("Captcha",)) is None
