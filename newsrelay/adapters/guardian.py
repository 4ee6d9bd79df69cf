from .base import RawItem, SourceAdapter
from ..normalizer import build_article
from ..schema import NormalizedArticle


class GuardianAdapter(SourceAdapter):
    """Guardian content search with all fields (byline, trailText, thumbnail, bodyText)."""

    name = "Guardian"
    url = "https://content.guardianapis.com/search"

    def __init__(self, api_key: str, client=None):
        super().__init__(client)
        if not api_key:
            raise RuntimeError("GUARDIAN_KEY not set")
        self.api_key = api_key

    async def fetch(self) -> list[RawItem]:
        data = await self._get_json(self.url, params={"api-key": self.api_key, "show-fields": "all"})
        return (data.get("response") or {}).get("results") or []

    def normalize(self, item: RawItem) -> NormalizedArticle:
        fields = item.get("fields") or {}
        return build_article(
            self.name,
            title=item.get("webTitle"),
            description=fields.get("trailText"),
            url=item.get("webUrl"),
            author=fields.get("byline"),
            content=fields.get("bodyText"),
            image_url=fields.get("thumbnail"),
            published_at=item.get("webPublicationDate"),
        )
