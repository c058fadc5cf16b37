"""
News sources for the /news command.

A news source fetches the top stories for a section and knows which sections
it supports. The bot only talks to the `NewsSource` interface so tests can
swap in a fake.
"""

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol

logger = logging.getLogger(__name__)

NYT_TOP_STORIES_URL = "https://api.nytimes.com/svc/topstories/v2/{section}.json"

# Display names for the NYT Top Stories sections, in the order we offer them.
NYT_SECTIONS = {
    "home": "General",
    "arts": "Arts",
    "automobile": "Automobiles",
    "books": "Books",
    "business": "Business",
    "fashion": "Fashion",
    "food": "Food",
    "health": "Health",
    "movies": "Movies",
    "politics": "Politics",
    "realestate": "Real Estate",
    "science": "Science",
    "sports": "Sports",
    "technology": "Technology",
    "theater": "Theater",
    "travel": "Travel",
    "us": "U.S.",
    "world": "World",
}


class NewsError(Exception):
    """Base class for news lookup failures."""


class InvalidSection(NewsError):
    """The requested section is not recognized by the provider."""


class UpstreamError(NewsError):
    """Any other failure talking to the provider."""


@dataclass(frozen=True)
class Article:
    """What we need to render one story in Slack."""

    title: str
    abstract: str
    url: str
    published_at: Optional[str] = None


class NewsSource(Protocol):
    def top_stories(self, section: str, top_n: int) -> List[Article]: ...

    def supported_sections(self) -> List[str]: ...

    def user_friendly_section(self, section: str) -> str: ...


def format_published_date(value: Optional[str]) -> Optional[str]:
    """Turn an ISO-8601 timestamp into e.g. 'January 02, 2006'."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value).strftime("%B %d, %Y")
    except ValueError:
        return None


class NYTimes:
    """Talks to The New York Times Top Stories API."""

    def __init__(self, api_key: str, timeout: Optional[float] = None):
        self.api_key = api_key
        self.timeout = timeout

    def top_stories(self, section: str, top_n: int) -> List[Article]:
        """Return up to `top_n` well-formed articles for `section`, in upstream order."""
        if section not in NYT_SECTIONS:
            raise InvalidSection(section)

        results = self._fetch(section)

        articles = []
        for item in results:
            if len(articles) >= top_n:
                break
            if not isinstance(item, dict):
                continue
            title = item.get("title")
            url = item.get("short_url") or item.get("url")
            # Basic validation: we need at least a title and a link
            if not isinstance(title, str) or not title.strip() or not isinstance(url, str):
                continue
            articles.append(
                Article(
                    title=title.strip(),
                    abstract=item.get("abstract") or "",
                    url=url,
                    published_at=format_published_date(item.get("published_date")),
                )
            )
        return articles

    def supported_sections(self) -> List[str]:
        return list(NYT_SECTIONS)

    def user_friendly_section(self, section: str) -> str:
        return NYT_SECTIONS.get(section, "")

    def _fetch(self, section: str) -> list:
        url = NYT_TOP_STORIES_URL.format(section=urllib.parse.quote(section))
        url += "?" + urllib.parse.urlencode({"api-key": self.api_key})
        req = urllib.request.Request(url, headers={"Accept": "application/json"})
        logger.debug(f"Fetching top stories for section {section!r}")

        try:
            kwargs = {} if self.timeout is None else {"timeout": self.timeout}
            with urllib.request.urlopen(req, **kwargs) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as exc:
            if exc.code == 404:
                raise InvalidSection(section) from exc
            raise UpstreamError(f"NYT API returned HTTP {exc.code}") from exc
        except (urllib.error.URLError, OSError) as exc:
            raise UpstreamError(f"NYT API request failed: {exc}") from exc

        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise UpstreamError("NYT API returned invalid JSON") from exc

        if not isinstance(data, dict) or data.get("status") != "OK":
            raise UpstreamError(f"NYT API returned an unexpected payload for {section!r}")
        return data.get("results") or []
