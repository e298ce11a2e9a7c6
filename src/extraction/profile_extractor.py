"""
Company metadata extraction from a rendered company page.

Sources, in order of trust:
1. JSON-LD Organization blocks (extruct)
2. Open Graph / meta description tags
3. The about-section definition list (label -> value pairs)
4. trafilatura main-text extraction as a description fallback
"""

import logging
import re
from typing import Any, Dict, List, Optional

import extruct
import trafilatura
from bs4 import BeautifulSoup

from ..company_profiles import resolve_company_id
from ..models import CompanyMetadata

logger = logging.getLogger(__name__)

ORGANIZATION_TYPES = {"Organization", "Corporation", "LocalBusiness", "Company"}

# About-section labels -> CompanyMetadata field
ABOUT_LABELS = {
    "website": "website",
    "industry": "industry",
    "company size": "company_size",
    "headquarters": "headquarters",
    "founded": "founded",
    "specialties": "specialties",
}

FOLLOWERS_RE = re.compile(r"([\d.,]+[KMB]?)\s+followers", re.IGNORECASE)
YEAR_RE = re.compile(r"\b(1[89]\d{2}|20\d{2})\b")


def _clean(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    text = re.sub(r"\s+", " ", text).strip()
    return text or None


def _address_text(address: Any) -> Optional[str]:
    if isinstance(address, str):
        return _clean(address)
    if isinstance(address, list) and address:
        return _address_text(address[0])
    if isinstance(address, dict):
        parts = [address.get(k) for k in ("addressLocality", "addressRegion", "addressCountry")]
        parts = [p if isinstance(p, str) else (p or {}).get("name") for p in parts]
        return _clean(", ".join(p for p in parts if p))
    return None


def _json_ld_organization(html: str, url: str) -> Dict[str, Any]:
    try:
        data = extruct.extract(html, base_url=url, syntaxes=["json-ld"], errors="ignore")
    except Exception as e:
        logger.debug(f"JSON-LD extraction error: {e}")
        return {}

    items: List[Dict[str, Any]] = []
    for block in data.get("json-ld", []):
        if isinstance(block, dict) and "@graph" in block:
            items.extend(i for i in block["@graph"] if isinstance(i, dict))
        elif isinstance(block, dict):
            items.append(block)

    for item in items:
        kind = item.get("@type")
        kinds = set(kind) if isinstance(kind, list) else {kind}
        if kinds & ORGANIZATION_TYPES:
            return item
    return {}


def _about_pairs(soup: BeautifulSoup) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for dl in soup.find_all("dl"):
        label = None
        for node in dl.find_all(["dt", "dd"]):
            text = _clean(node.get_text(" "))
            if not text:
                continue
            if node.name == "dt":
                label = text.lower()
            elif label and label not in pairs:
                pairs[label] = text
    return pairs


def extract_company_metadata(html: str, url: str, company_id: Optional[str] = None) -> CompanyMetadata:
    """Build CompanyMetadata from page markup. Missing fields stay None."""
    metadata = CompanyMetadata(company_id=company_id or resolve_company_id(url) or "unknown", source_url=url)
    if not html:
        return metadata

    # 1. JSON-LD
    org = _json_ld_organization(html, url)
    if org:
        metadata.name = _clean(org.get("name"))
        metadata.description = _clean(org.get("description"))
        same_as = org.get("sameAs")
        metadata.website = _clean(org.get("url") if isinstance(org.get("url"), str) else None)
        if not metadata.website and isinstance(same_as, str):
            metadata.website = same_as
        metadata.headquarters = _address_text(org.get("address"))
        employees = org.get("numberOfEmployees")
        if isinstance(employees, dict):
            metadata.company_size = _clean(str(employees.get("value") or ""))
        logo = org.get("logo")
        if isinstance(logo, dict):
            logo = logo.get("contentUrl") or logo.get("url")
        if isinstance(logo, str):
            metadata.logo_url = logo
        founded = YEAR_RE.search(str(org.get("foundingDate") or ""))
        if founded:
            metadata.founded = int(founded.group(1))

    soup = BeautifulSoup(html, "lxml")

    # 2. Open Graph / meta
    og_title = soup.find("meta", property="og:title")
    if not metadata.name and og_title and og_title.get("content"):
        metadata.name = _clean(og_title["content"].split("|")[0])
    if not metadata.name:
        h1 = soup.find("h1")
        if h1:
            metadata.name = _clean(h1.get_text(" "))
    if not metadata.description:
        for attrs in ({"property": "og:description"}, {"name": "description"}):
            tag = soup.find("meta", attrs=attrs)
            if tag and tag.get("content"):
                metadata.description = _clean(tag["content"])
                break

    # 3. About-section pairs
    for label, value in _about_pairs(soup).items():
        field = ABOUT_LABELS.get(label)
        if field is None:
            metadata.attributes[label] = value
        elif field == "founded":
            year = YEAR_RE.search(value)
            if year and not metadata.founded:
                metadata.founded = int(year.group(1))
        elif field == "specialties":
            metadata.specialties = [s.strip() for s in re.split(r",|\band\b", value) if s.strip()]
        elif not getattr(metadata, field):
            setattr(metadata, field, value)

    followers = FOLLOWERS_RE.search(soup.get_text(" "))
    if followers:
        metadata.followers = followers.group(1)

    # 4. Main-text fallback
    if not metadata.description:
        text = trafilatura.extract(html, url=url, include_comments=False, include_tables=False)
        if text:
            metadata.description = _clean(text[:2000])

    logger.info(f"🏢 [Profile] {metadata.company_id}: name={metadata.name!r}, industry={metadata.industry!r}")
    return metadata
