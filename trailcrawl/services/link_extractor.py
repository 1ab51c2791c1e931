import logging
from typing import Callable, List, Optional, Tuple
from urllib.parse import urljoin, urldefrag

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

_SKIPPED_SCHEMES = ("mailto:", "javascript:", "tel:", "data:")


class LinkExtractor:
    """Pull follow-able links out of fetched HTML."""

    def __init__(self, soup_factory: Optional[Callable[[str], BeautifulSoup]] = None, include_embedded: bool = True):
        self._soup_factory = soup_factory or (lambda html: BeautifulSoup(html, "html.parser"))
        self.include_embedded = include_embedded

    def extract_links(self, base_url: str, html: str) -> List[Tuple[str, str]]:
        """Return (absolute_url, anchor_text) pairs in document order."""
        if not html:
            return []
        soup = self._soup_factory(html)
        base_tag = soup.find("base", href=True)
        if base_tag is not None:
            base_url = urljoin(base_url, base_tag["href"])

        urls = []
        for a in soup.find_all("a", href=True):
            href = a.get("href").strip()
            if not href or href.startswith("#") or href.lower().startswith(_SKIPPED_SCHEMES):
                continue
            abs_url, _ = urldefrag(urljoin(base_url, href))
            urls.append((abs_url, a.get_text(strip=True)))

        if self.include_embedded:
            # Documents and images referenced from a page are evidence as well.
            for tag, attr in (("iframe", "src"), ("embed", "src"), ("object", "data"), ("img", "src")):
                for el in soup.find_all(tag, **{attr: True}):
                    src = el.get(attr).strip()
                    if not src or src.lower().startswith(_SKIPPED_SCHEMES):
                        continue
                    abs_url, _ = urldefrag(urljoin(base_url, src))
                    urls.append((abs_url, el.get("alt", "") or ""))
        return urls

    def extract_urls(self, base_url: str, content_type: Optional[str], body: bytes) -> List[str]:
        ct = (content_type or "").lower()
        if ct and "html" not in ct:
            return []
        try:
            html = body.decode("utf-8", errors="replace")
            return [url for url, _ in self.extract_links(base_url, html)]
        except Exception:
            logger.exception("Error extracting links from %s", base_url)
            return []
