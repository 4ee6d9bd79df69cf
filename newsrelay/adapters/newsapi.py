from .base import RawItem, SourceAdapter
from ..normalizer import build_article
from ..schema import NormalizedArticle


class NewsAPIAdapter(SourceAdapter):
    """NewsAPI top headlines (/v2/top-headlines, US, English)."""

    name = "NewsAPI"
    url = "https://newsapi.org/v2/top-headlines"

    def __init__(self, api_key: str, client=None, country: str = "us"):
        super().__init__(client)
        if not api_key:
            raise RuntimeError(f"{self.name} api key not set")
        self.api_key = api_key
        self.country = country

    def params(self) -> dict:
        return {"country": self.country, "apiKey": self.api_key}

    async def fetch(self) -> list[RawItem]:
        data = await self._get_json(self.url, params=self.params())
        return data.get("articles") or []

    def normalize(self, item: RawItem) -> NormalizedArticle:
        return build_article(
            self.name,
            title=item.get("title"),
            description=item.get("description"),
            url=item.get("url"),
            author=item.get("author"),
            content=item.get("content"),
            image_url=item.get("urlToImage") or item.get("image"),
            published_at=item.get("publishedAt") or item.get("published_at"),
        )


class GNewsAdapter(NewsAPIAdapter):
    """GNews top headlines; same article shape as NewsAPI, `image` instead of `urlToImage`."""

    name = "GNews"
    url = "https://gnews.io/api/v4/top-headlines"

    def params(self) -> dict:
        return {"token": self.api_key, "lang": "en", "country": self.country}
