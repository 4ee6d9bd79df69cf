from .base import RawItem, SourceAdapter
from ..normalizer import build_article
from ..schema import NormalizedArticle


class NewsdataAdapter(SourceAdapter):
    name = "Newsdata"
    url = "https://newsdata.io/api/1/news"

    def __init__(self, api_key: str, client=None):
        super().__init__(client)
        if not api_key:
            raise RuntimeError("NEWSDATA_KEY not set")
        self.api_key = api_key

    async def fetch(self) -> list[RawItem]:
        data = await self._get_json(
            self.url, params={"apikey": self.api_key, "country": "us", "language": "en"}
        )
        return data.get("results") or []

    def normalize(self, item: RawItem) -> NormalizedArticle:
        # `creator` is a list of names (or null)
        return build_article(
            self.name,
            title=item.get("title"),
            description=item.get("description"),
            url=item.get("link"),
            author=item.get("creator"),
            content=item.get("content"),
            image_url=item.get("image_url"),
            published_at=item.get("pubDate"),
        )
