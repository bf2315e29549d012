import asyncio
from typing import Dict, List, Optional
import aiohttp

from seo_writer.config import settings
from seo_writer.utils.logger import logger

CONCURRENT_LINK_CHECKS = 5
MAX_LINKS_PER_CHECK = 50


class LinkChecker:
    """Reachability check for external URLs using HEAD requests.

    ``check`` returns a map of url -> reason for every URL that failed;
    reachable URLs are absent from the map.
    """

    def __init__(self, timeout: Optional[float] = None, concurrency: int = CONCURRENT_LINK_CHECKS):
        self.timeout = timeout if timeout is not None else settings.LINK_CHECK_TIMEOUT
        self.concurrency = concurrency

    async def check(self, urls: List[str]) -> Dict[str, str]:
        unique = [u for u in dict.fromkeys(urls) if u.startswith("http")][:MAX_LINKS_PER_CHECK]
        if not unique:
            return {}

        sem = asyncio.Semaphore(self.concurrency)
        broken: Dict[str, str] = {}
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:

            async def _check_one(link: str) -> None:
                async with sem:
                    try:
                        async with session.head(link, allow_redirects=True) as resp:
                            if resp.status >= 400:
                                broken[link] = f"HTTP {resp.status}"
                    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                        broken[link] = f"connection error: {type(e).__name__}"

            await asyncio.gather(*[_check_one(link) for link in unique])

        if broken:
            logger.info(f"Link check: {len(broken)} of {len(unique)} URLs unreachable")
        return broken
