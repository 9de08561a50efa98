"""
BeautifulSoup-based parsing layer for listing pages.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from bs4 import BeautifulSoup, Tag

from harvester.domain.harvest import FieldSelector

PAGE_NUMBER_REGEX = re.compile(r"\d+")


class HTMLParsingLayer:
    """
    Deterministic field extraction from rendered HTML.
    """

    @classmethod
    def parse(cls, html: str) -> BeautifulSoup:
        return BeautifulSoup(html, "html.parser")

    @classmethod
    def extract_fields(
        cls,
        *,
        soup: BeautifulSoup,
        selectors: Iterable[FieldSelector],
    ) -> dict[str, Any]:
        """
        Apply a field map to a document. Missing single fields map to None.
        """

        fields: dict[str, Any] = {}
        for selector in selectors:
            kind = selector.kind.strip().lower()
            if kind == "text":
                fields[selector.name] = cls._first_text(soup, selector.selector)
            elif kind == "attr":
                fields[selector.name] = cls._first_attribute(
                    soup, selector.selector, selector.attribute or "href"
                )
            elif kind == "list":
                fields[selector.name] = cls._all_texts(soup, selector.selector)
            elif kind == "join":
                texts = cls._all_texts(
                    soup,
                    selector.selector,
                    exclude_class=selector.exclude_class,
                )
                separator = "\n" if selector.separator is None else selector.separator
                fields[selector.name] = separator.join(texts) if texts else None
            elif kind == "split":
                fields.update(cls._split_text(soup, selector))
            else:
                raise ValueError(f"Unknown field selector kind: {selector.kind}")
        return fields

    @classmethod
    def extract_links(cls, *, soup: BeautifulSoup, selector: str) -> set[str]:
        links: set[str] = set()
        for node in cls._select_elements(soup=soup, selector=selector):
            href = node.get("href")
            if isinstance(href, str) and href.strip():
                links.add(href.strip())
        return links

    @classmethod
    def extract_page_count(cls, *, soup: BeautifulSoup, selector: str) -> int | None:
        """
        Highest page number shown by a pagination widget, if any.
        """

        numbers = [
            int(match)
            for text in cls._all_texts(soup, selector)
            for match in PAGE_NUMBER_REGEX.findall(text)
        ]
        return max(numbers) if numbers else None

    @classmethod
    def contains_marker(cls, *, html: str, markers: Iterable[str]) -> str | None:
        for marker in markers:
            if marker and marker in html:
                return marker
        return None

    @classmethod
    def _split_text(cls, soup: BeautifulSoup, selector: FieldSelector) -> dict[str, Any]:
        names = selector.split_into or (selector.name,)
        text = cls._first_text(soup, selector.selector)
        if text is None:
            return {name: None for name in names}
        parts = text.split(selector.separator or ".")
        return {
            name: (cls._clean_text(parts[index]) or None) if index < len(parts) else None
            for index, name in enumerate(names)
        }

    @classmethod
    def _first_text(cls, soup: BeautifulSoup, selector: str) -> str | None:
        node = soup.select_one(selector)
        if node is None:
            return None
        return cls._clean_text(node.get_text(" ", strip=True)) or None

    @classmethod
    def _first_attribute(cls, soup: BeautifulSoup, selector: str, attribute: str) -> str | None:
        node = soup.select_one(selector)
        if node is None:
            return None
        value = node.get(attribute)
        if isinstance(value, list):
            value = " ".join(value)
        return value.strip() if isinstance(value, str) and value.strip() else None

    @classmethod
    def _all_texts(
        cls,
        soup: BeautifulSoup,
        selector: str,
        *,
        exclude_class: str | None = None,
    ) -> list[str]:
        texts: list[str] = []
        for node in cls._select_elements(soup=soup, selector=selector):
            if exclude_class and exclude_class in (node.get("class") or []):
                continue
            text = cls._clean_text(node.get_text(" ", strip=True))
            if text:
                texts.append(text)
        return texts

    @staticmethod
    def _select_elements(*, soup: BeautifulSoup, selector: str) -> list[Tag]:
        return [node for node in soup.select(selector) if isinstance(node, Tag)]

    @staticmethod
    def _clean_text(value: str) -> str:
        return re.sub(r"\s+", " ", value).strip()
