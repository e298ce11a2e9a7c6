"""
Test doubles and sample URLs shared across the test modules.
"""

from typing import Any, Dict, List, Optional

from src.extraction.page_surface import ObservedRequest, ObservedResponse, PageSurface

BANNER_URL = (
    "https://media.licdn.com/dms/image/v2/D4E3DAQ/company-background_10000/B4EZ/0/"
    "1700000000000/acme_cover_1200x300?e=2147483647&v=beta&t=abc"
)
LOGO_URL = (
    "https://media.licdn.com/dms/image/v2/D4E0BAQ/company-logo_200_200/B4EZ/0/"
    "1700000000000/acme_logo?e=2147483647&v=beta&t=abc"
)
AVATAR_URL = (
    "https://media.licdn.com/dms/image/v2/C5603AQ/profile-displayphoto-shrink_800_800/0/"
    "1650000000000?e=2147483647&v=beta&t=abc"
)
COMPANY_URL = "https://www.linkedin.com/company/acme/"


class FakeSurface(PageSurface):
    """In-memory page: canned markup, lookup results and manually emitted traffic."""

    def __init__(self, html: str = "<html><body></body></html>", url: str = COMPANY_URL,
                 lookups: Optional[Dict[str, str]] = None, health: Optional[Dict[str, Any]] = None):
        self._url = url
        self.html = html
        self.lookups = lookups or {}
        self.health = health or {"positive": [".global-nav"], "negative": []}
        self.request_listeners: List = []
        self.response_listeners: List = []
        self.scrolls: List[float] = []
        self.clicks: List[str] = []

    @property
    def url(self) -> str:
        return self._url

    def on_request(self, listener) -> None:
        self.request_listeners.append(listener)

    def on_response(self, listener) -> None:
        self.response_listeners.append(listener)

    def emit(self, response: ObservedResponse, with_request: bool = True) -> None:
        if with_request:
            self.emit_request(response.url, response.method)
        for listener in self.response_listeners:
            listener(response)

    def emit_request(self, url: str, method: str = "GET") -> None:
        for listener in self.request_listeners:
            listener(ObservedRequest(url=url, method=method))

    async def content(self) -> str:
        return self.html

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if isinstance(arg, list) and arg and isinstance(arg[0], list):
            return self.health
        if isinstance(arg, list) and arg:
            return self.lookups.get(arg[0])
        return None

    async def scroll(self, fraction: float) -> None:
        self.scrolls.append(fraction)

    async def click(self, selector: str, timeout: float = 2.0) -> bool:
        self.clicks.append(selector)
        return False


