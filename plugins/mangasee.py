import requests
from selectolax.parser import HTMLParser

from extensions.base import SourceCapability
from models.models import ChapterSummary, MangaDetail, MangaStatus, MangaSummary, PageRef
from utils.exceptions import (
    NotFoundError,
    RateLimitedError,
    SourceProtocolError,
    SourceUnreachableError,
)
from utils.logging import get_logger

logger = get_logger(__name__)


class Mangasee(SourceCapability):
    key = "mangasee"
    name = "Mangasee"
    version = "1.0.0"
    base_url = "https://mangaseeonline.us"

    def __init__(self, base_url: str | None = None, timeout: float = 15.0) -> None:
        if base_url:
            self.base_url = base_url.rstrip("/")
        self.headers = {"Referer": f"{self.base_url}/"}
        self.timeout = timeout
        self.session = requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> HTMLParser:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise SourceUnreachableError(f"{url}: {e}", self.key) from e
        if resp.status_code == 404:
            raise NotFoundError(f"{url} not found")
        if resp.status_code == 429:
            raise RateLimitedError(f"{url}: too many requests", self.key)
        if resp.status_code >= 400:
            raise SourceUnreachableError(f"{url}: HTTP {resp.status_code}", self.key)
        return HTMLParser(resp.text)

    def list_manga(self, query: str, page: int = 1) -> list[MangaSummary]:
        if not query:
            return self._latest()
        tree = self._request(
            "POST",
            "/search/request.php",
            data={"keyword": query, "page": str(page), "sortBy": "popularity", "sortOrder": "descending"},
        )
        results = []
        for row in tree.css(".requested .row"):
            link = row.css_first(".resultLink")
            if link is None or not link.attributes.get("href"):
                continue
            img = row.css_first("img")
            results.append(
                MangaSummary(
                    provider_id=link.attributes["href"],
                    title=link.text(strip=True),
                    cover_url=img.attributes.get("src") if img else None,
                )
            )
        return results

    def _latest(self) -> list[MangaSummary]:
        tree = self._request("GET", "/")
        results, seen = [], set()
        for link in tree.css(".latestSeries"):
            href = link.attributes.get("href") or ""
            # Latest entries link to a chapter; strip it to get the series page
            path = href.split("-chapter-")[0].replace("read-online", "manga")
            if not path or path in seen:
                continue
            seen.add(path)
            title = link.attributes.get("title") or link.text(strip=True) or path.rsplit("/", 1)[-1]
            results.append(MangaSummary(provider_id=path, title=title))
        return results

    def manga_detail(self, provider_id: str) -> MangaDetail:
        tree = self._request("GET", provider_id)
        title = tree.css_first("h1.SeriesName")
        if title is None:
            raise SourceProtocolError(f"No series name on {provider_id}", self.key)

        cover = tree.css_first(".leftImage img")
        author = tree.css_first('a[href*="author"]')
        status = tree.css_first(".PublishStatus")
        description = tree.css_first(".description")
        return MangaDetail(
            provider_id=provider_id,
            title=title.text(strip=True),
            cover_url=cover.attributes.get("src") if cover else None,
            author=author.text(strip=True) if author else None,
            genres=[a.text(strip=True) for a in tree.css('a[href*="genre"]')],
            status=MangaStatus.parse(status.attributes.get("status") if status else None),
            description=description.text(strip=True) if description else None,
        )

    def chapter_list(self, provider_id: str) -> list[ChapterSummary]:
        tree = self._request("GET", provider_id)
        chapters = []
        for link in tree.css(".mainWell .chapter-list a[chapter]"):
            href = link.attributes.get("href")
            if not href:
                continue
            number = link.attributes.get("chapter")
            chapters.append(
                ChapterSummary(provider_id=href, title=f"Chapter {number}", number=number)
            )
        # Listed newest first on the site
        chapters.reverse()
        return chapters

    def page_list(self, provider_id: str, chapter_id: str) -> list[PageRef]:
        tree = self._request("GET", chapter_id)
        pages = [
            PageRef(url=img.attributes["src"])
            for img in tree.css(".fullchapimage img")
            if img.attributes.get("src")
        ]
        if not pages:
            raise SourceProtocolError(f"No page images on {chapter_id}", self.key)
        return pages

    def close(self) -> None:
        self.session.close()


def create(config: dict) -> Mangasee:
    return Mangasee(base_url=config.get("base_url"), timeout=config.get("timeout", 15.0))
