from .base import RawItem, SourceAdapter
from ..normalizer import build_article
from ..schema import NormalizedArticle


class MediastackAdapter(SourceAdapter):
    name = "Mediastack"
    url = "http://api.mediastack.com/v1/news"

    def __init__(self, api_key: str, client=None):
        super().__init__(client)
        if not api_key:
            raise RuntimeError("MEDIASTACK_KEY not set")
        self.api_key = api_key

    async def fetch(self) -> list[RawItem]:
        data = await self._get_json(
            self.url, params={"access_key": self.api_key, "countries": "us", "languages": "en"}
        )
        return data.get("data") or []

    def normalize(self, item: RawItem) -> NormalizedArticle:
        # Mediastack has no body text; the description doubles as content
        return build_article(
            self.name,
            title=item.get("title"),
            description=item.get("description"),
            url=item.get("url"),
            author=item.get("author"),
            content=item.get("description"),
            image_url=item.get("image"),
            published_at=item.get("published_at"),
        )
