"""Shared data models for feedcircle."""

import json
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class Source:
    """A friend blog whose feed is crawled."""

    name: str
    feed_url: str
    avatar: str = ""
    url: str = ""


@dataclass(frozen=True)
class Article:
    """One digest entry built from a feed item."""

    title: str
    link: str
    published: str
    author: str
    avatar: str
    content: str
    url: str


@dataclass(frozen=True)
class DigestMeta:
    """Summary of a crawl cycle stored alongside the articles."""

    article_count: int
    generated_at: str
    sources_total: int
    sources_failed: int
    failed_sources: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Digest:
    """The aggregated result of one crawl cycle."""

    meta: DigestMeta
    articles: list[Article]

    @classmethod
    def build(
        cls,
        articles: list[Article],
        generated_at: str,
        sources_total: int,
        failed_sources: list[str],
    ) -> "Digest":
        """Create a digest whose metadata counts match its contents."""
        meta = DigestMeta(
            article_count=len(articles),
            generated_at=generated_at,
            sources_total=sources_total,
            sources_failed=len(failed_sources),
            failed_sources=list(failed_sources),
        )
        return cls(meta=meta, articles=list(articles))

    def to_dict(self) -> dict[str, Any]:
        return {
            "meta": asdict(self.meta),
            "articles": [asdict(article) for article in self.articles],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)
