"""
Scanning helpers shared by the strategies.

Two complementary passes over a response payload:
- full-text regex match over the serialized payload (catches URLs anywhere)
- recursive key-name inspection (catches values stored under known key names)
"""

import json
import logging
import re
from typing import Any, Iterable, List, Optional, Pattern

logger = logging.getLogger(__name__)

CSS_URL_RE = re.compile(r"url\(\s*['\"]?([^'\")]+)['\"]?\s*\)", re.IGNORECASE)


def compile_patterns(patterns: Iterable[str]) -> List[Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


def regex_scan(text: str, patterns: List[Pattern]) -> List[str]:
    """Matches of every pattern; the first capture group is used when a pattern has one."""
    found: List[str] = []
    for pattern in patterns:
        for match in pattern.finditer(text):
            value = match.group(1) if pattern.groups else match.group(0)
            if value and value not in found:
                found.append(value)
    return found


def _string_values(value: Any) -> Iterable[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for nested in value.values():
            yield from _string_values(nested)
    elif isinstance(value, list):
        for nested in value:
            yield from _string_values(nested)


def key_scan(data: Any, target_keys: Iterable[str], max_depth: int = 25) -> List[str]:
    """Every string stored (at any depth) under a key whose normalized name is a target key."""
    keys = {k.lower() for k in target_keys}
    found: List[str] = []

    def visit(node: Any, depth: int) -> None:
        if depth > max_depth:
            return
        if isinstance(node, dict):
            for key, value in node.items():
                if isinstance(key, str) and key.lower() in keys:
                    for text in _string_values(value):
                        if text.startswith(("http", "//")) and text not in found:
                            found.append(text)
                visit(value, depth + 1)
        elif isinstance(node, list):
            for item in node:
                visit(item, depth + 1)

    visit(data, 0)
    return found


def parse_json(body: Optional[str]) -> Any:
    """Decoded JSON body, or None. Strips the usual anti-hijacking prefixes."""
    if not body:
        return None
    text = body.lstrip()
    for prefix in ("for (;;);", "while(1);", ")]}'"):
        if text.startswith(prefix):
            text = text[len(prefix):].lstrip()
    if not text or text[0] not in "{[":
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def scan_payload(payload: Any, patterns: List[Pattern], target_keys: Iterable[str]) -> List[str]:
    """Full-text plus key-name scan of a decoded payload (or raw text)."""
    if payload is None:
        return []
    if isinstance(payload, str):
        return regex_scan(payload, patterns)
    text = json.dumps(payload, ensure_ascii=False)
    found = regex_scan(text, patterns)
    for url in key_scan(payload, target_keys):
        if url not in found:
            found.append(url)
    return found


def scan_css(text: str, cdn_patterns: List[Pattern]) -> List[str]:
    """CDN URLs and url(...) references from a style block or inline style."""
    found = regex_scan(text, cdn_patterns)
    for match in CSS_URL_RE.finditer(text):
        url = match.group(1).strip()
        if url and url not in found:
            found.append(url)
    return found
