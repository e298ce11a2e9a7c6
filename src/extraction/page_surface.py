"""
Page automation surface.

The cascade only needs a handful of capabilities from a live page: request/response
events, the rendered markup, read-only script evaluation, scrolling and clicking by
locator. PageSurface is that contract; PlaywrightPageSurface adapts a Playwright page.
"""

import abc
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ObservedRequest:
    url: str
    method: str = "GET"
    resource_type: Optional[str] = None


@dataclass
class ObservedResponse:
    url: str
    status: int
    method: str = "GET"
    content_type: str = ""
    body: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400


RequestListener = Callable[[ObservedRequest], None]
ResponseListener = Callable[[ObservedResponse], None]


class PageSurface(abc.ABC):
    """What the extraction cascade consumes from the page-automation layer."""

    @property
    @abc.abstractmethod
    def url(self) -> str:
        ...

    @abc.abstractmethod
    def on_request(self, listener: RequestListener) -> None:
        ...

    @abc.abstractmethod
    def on_response(self, listener: ResponseListener) -> None:
        ...

    @abc.abstractmethod
    async def content(self) -> str:
        ...

    @abc.abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        ...

    @abc.abstractmethod
    async def scroll(self, fraction: float) -> None:
        ...

    @abc.abstractmethod
    async def click(self, selector: str, timeout: float = 2.0) -> bool:
        ...

    async def cookies(self) -> List[Dict[str, Any]]:
        return []

    async def user_agent(self) -> Optional[str]:
        return None


# Response bodies larger than this are not read for pattern scanning
MAX_BODY_BYTES = 2_000_000
_SCANNED_CONTENT_TYPES = ("json", "javascript", "text/plain", "text/html", "text/css")


class PlaywrightPageSurface(PageSurface):
    """PageSurface over a playwright.async_api.Page."""

    def __init__(self, page: Any):
        self.page = page
        self._response_listeners: List[ResponseListener] = []
        self._subscribed = False
        self._pending: set = set()

    @property
    def url(self) -> str:
        return self.page.url

    def on_request(self, listener: RequestListener) -> None:
        self.page.on(
            "request",
            lambda request: listener(ObservedRequest(
                url=request.url, method=request.method, resource_type=request.resource_type,
            )),
        )

    def on_response(self, listener: ResponseListener) -> None:
        self._response_listeners.append(listener)
        if not self._subscribed:
            self.page.on("response", self._handle_response)
            self._subscribed = True

    def _handle_response(self, response: Any) -> None:
        # Body reads are async; listeners get the response once the body is in
        task = asyncio.ensure_future(self._deliver(response))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, response: Any) -> None:
        headers = dict(response.headers or {})
        content_type = headers.get("content-type", "")
        body = None
        if any(t in content_type for t in _SCANNED_CONTENT_TYPES):
            try:
                length = int(headers.get("content-length", "0") or 0)
                if length <= MAX_BODY_BYTES:
                    body = await response.text()
            except Exception as e:
                logger.debug(f"Could not read response body for {response.url[:100]}: {e}")
        observed = ObservedResponse(
            url=response.url,
            status=response.status,
            method=response.request.method,
            content_type=content_type,
            body=body,
            headers=headers,
        )
        for listener in self._response_listeners:
            listener(observed)

    async def content(self) -> str:
        return await self.page.content()

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await self.page.evaluate(script)
        return await self.page.evaluate(script, arg)

    async def scroll(self, fraction: float) -> None:
        await self.page.evaluate("(f) => window.scrollTo(0, document.body.scrollHeight * f)", fraction)

    async def click(self, selector: str, timeout: float = 2.0) -> bool:
        try:
            locator = self.page.locator(selector).first
            if not await locator.is_visible():
                return False
            await locator.click(timeout=timeout * 1000)
            return True
        except Exception as e:
            logger.debug(f"Click on {selector} failed: {e}")
            return False

    async def cookies(self) -> List[Dict[str, Any]]:
        return await self.page.context.cookies()

    async def user_agent(self) -> Optional[str]:
        return await self.page.evaluate("() => navigator.userAgent")
