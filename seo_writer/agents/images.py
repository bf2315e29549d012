import asyncio
from typing import Dict, Any, List, Optional
import aiohttp

from seo_writer.config import settings
from seo_writer.agents.errors import AssetSelectionFailure
from seo_writer.agents.schemas import ImageCandidate
from seo_writer.utils.logger import logger

UNSPLASH_SEARCH_URL = "https://api.unsplash.com/search/photos"


class ImageSearchProvider:
    name = "base"

    async def search(self, query: str, limit: int = 10) -> List[ImageCandidate]:
        raise NotImplementedError


class UnsplashImageProvider(ImageSearchProvider):
    name = "unsplash"

    def __init__(self, access_key: Optional[str] = None, timeout: Optional[float] = None):
        self.access_key = access_key or settings.UNSPLASH_ACCESS_KEY
        self.timeout = timeout if timeout is not None else settings.IMAGE_SEARCH_TIMEOUT

    async def search(self, query: str, limit: int = 10) -> List[ImageCandidate]:
        if not self.access_key:
            raise AssetSelectionFailure("UNSPLASH_ACCESS_KEY is not configured")

        params = {"query": query, "per_page": str(limit), "orientation": "landscape"}
        headers = {"Authorization": f"Client-ID {self.access_key}", "Accept-Version": "v1"}
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.get(UNSPLASH_SEARCH_URL, params=params, headers=headers) as resp:
                    if resp.status != 200:
                        raise AssetSelectionFailure(f"Unsplash search failed with HTTP {resp.status}")
                    payload = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AssetSelectionFailure(f"Unsplash search failed: {type(e).__name__}") from e

        return [self._to_candidate(item) for item in payload.get("results", [])]

    @staticmethod
    def _to_candidate(item: Dict[str, Any]) -> ImageCandidate:
        urls = item.get("urls") or {}
        user = item.get("user") or {}
        return ImageCandidate(
            id=str(item.get("id", "")),
            provider="unsplash",
            url=urls.get("regular") or urls.get("full") or "",
            preview_url=urls.get("small"),
            alt=item.get("alt_description") or item.get("description") or "",
            width=int(item.get("width") or 0),
            height=int(item.get("height") or 0),
            author_name=user.get("name") or "",
            author_url=(user.get("links") or {}).get("html"),
        )


def choose_cover(candidates: List[ImageCandidate]) -> ImageCandidate:
    """Widest landscape image that has alt text."""
    usable = [c for c in candidates if c.url and c.alt.strip() and c.width > c.height]
    if not usable:
        raise AssetSelectionFailure("No landscape image with alt text among the search results")
    return max(usable, key=lambda c: c.width)


def attribution(candidate: ImageCandidate) -> str:
    if candidate.provider == "unsplash":
        return f"Photo by {candidate.author_name or 'Unknown'} on Unsplash"
    return f"Image by {candidate.author_name or 'Unknown'} via {candidate.provider}"


async def select_cover_image(provider: ImageSearchProvider, title: str,
                             keywords: List[str]) -> Dict[str, Any]:
    """Search with the primary keyword (falling back to the title) and pick one image.

    Raises ``AssetSelectionFailure``; callers treat it as non-fatal.
    """
    query = keywords[0] if keywords else title
    candidates = await provider.search(query)
    if not candidates and query != title:
        candidates = await provider.search(title)
    chosen = choose_cover(candidates)
    logger.info(f"Cover image selected from {provider.name}: {chosen.id} ({chosen.width}x{chosen.height})")
    return {
        "image_url": chosen.url,
        "alt_text": chosen.alt.strip(),
        "attribution": attribution(chosen),
        "candidate": chosen,
    }
