"""HTTP client for the external content generation capability."""
import asyncio
from typing import Any, Dict, List, Optional
import aiohttp
from shared.config import settings
from shared.errors import FatalError, RecoverableError

# HTTP statuses worth retrying
RETRYABLE_STATUSES = {408, 425, 429, 500, 502, 503, 504}


class GenerationClient:
    """
    Client for the research/writing/validation service.

    Each operation is a JSON POST to ``{base_url}/{operation}`` whose response
    carries the result under ``"result"``. Transport failures, timeouts and
    retryable statuses raise RecoverableError; every other failure raises
    FatalError.
    """

    def __init__(
        self,
        base_url: str = None,
        api_key: Optional[str] = None,
        timeout: int = None
    ):
        self.base_url = (base_url or settings.generation_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.generation_api_key
        self.timeout = timeout or settings.generation_request_timeout
        self.headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            self.headers["Authorization"] = f"Bearer {self.api_key}"

    async def _call(self, operation: str, payload: Dict[str, Any]) -> Any:
        url = f"{self.base_url}/{operation}"
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self.headers
            ) as session:
                async with session.post(url, json=payload) as response:
                    if response.status in RETRYABLE_STATUSES:
                        raise RecoverableError(
                            f"{operation} returned HTTP {response.status}"
                        )
                    if response.status >= 400:
                        body = await response.text()
                        raise FatalError(
                            f"{operation} rejected with HTTP {response.status}: {body[:200]}"
                        )
                    try:
                        data = await response.json()
                    except (aiohttp.ContentTypeError, ValueError) as e:
                        raise FatalError(f"{operation} returned a non-JSON body") from e

        except asyncio.TimeoutError as e:
            raise RecoverableError(f"{operation} timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise RecoverableError(f"{operation} request failed: {e}") from e

        if not isinstance(data, dict) or "result" not in data:
            raise FatalError(f"{operation} response is missing 'result'")
        return data["result"]

    async def research(self, topic: str, keywords: List[str], notes: Optional[str] = None) -> Dict[str, Any]:
        return await self._call("research", {"topic": topic, "keywords": keywords, "notes": notes})

    async def outline(self, title: str, keywords: List[str], research_data: Any) -> Any:
        return await self._call("outline", {
            "title": title,
            "keywords": keywords,
            "research": research_data,
        })

    async def write(self, outline: Any, research_data: Any) -> str:
        return await self._call("write", {"outline": outline, "research": research_data})

    async def select_image(self, title: str, keywords: List[str]) -> Optional[Dict[str, Any]]:
        return await self._call("select-image", {"title": title, "keywords": keywords})

    async def quality_check(self, content: str) -> List[Dict[str, Any]]:
        return await self._call("quality-check", {"content": content})

    async def validate(self, content: str) -> List[Dict[str, Any]]:
        return await self._call("validate", {"content": content})

    async def revise(self, content: str, issues: List[Dict[str, Any]]) -> str:
        return await self._call("revise", {"content": content, "issues": issues})

    async def seo_audit(self, content: str, keywords: List[str]) -> Dict[str, Any]:
        return await self._call("seo-audit", {"content": content, "keywords": keywords})
