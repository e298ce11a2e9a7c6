"""Company profile targets - identifiers are derived from the profile URL, never hardcoded."""

import re
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urljoin, urlparse

DEFAULT_ENTITY_PATTERN = r"/company/([^/?#]+)"


@dataclass
class CompanyProfile:
    company_id: str
    url: str
    about_url: Optional[str] = None
    alternate_urls: List[str] = field(default_factory=list)

    def ensure_defaults(self, base_url: str) -> None:
        """Fill the about-page URL and the canonical profile URL variants."""
        canonical = urljoin(base_url, f"/company/{self.company_id}/")
        if not self.about_url:
            self.about_url = urljoin(canonical, "about/")
        for candidate in (canonical, urljoin(base_url, f"/company/{self.company_id}")):
            if candidate != self.url and candidate not in self.alternate_urls:
                self.alternate_urls.append(candidate)


def resolve_company_id(url: str, entity_pattern: str = DEFAULT_ENTITY_PATTERN) -> Optional[str]:
    """Entity identifier from a profile URL, e.g. '.../company/acme/about' -> 'acme'."""
    match = re.search(entity_pattern, urlparse(url).path)
    if not match:
        return None
    return match.group(1).strip().lower() or None


def get_company_profile(url: str, base_url: str, entity_pattern: str = DEFAULT_ENTITY_PATTERN) -> CompanyProfile:
    """Profile for a company page URL. Raises ValueError when no identifier can be found."""
    if not urlparse(url).scheme:
        url = urljoin(base_url, url)
    company_id = resolve_company_id(url, entity_pattern)
    if not company_id:
        raise ValueError(f"Could not resolve a company identifier from {url}")
    profile = CompanyProfile(company_id=company_id, url=url)
    profile.ensure_defaults(base_url)
    return profile
