"""Shared helper functions used by the enrichment workflow."""

from __future__ import annotations

import importlib.util
import os
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse, urlunparse

from .enrich_config import FAVICON_ENDPOINT, FAVICON_PATTERN, LOCAL_PROXY_HOSTS, SITE_TLD_SUFFIXES

_FAVICON_RE = re.compile(FAVICON_PATTERN, re.I)
_SCHEME_RE = re.compile(r"^https?://", re.I)
_TLD_RE = re.compile(r"\.(%s)$" % "|".join(SITE_TLD_SUFFIXES))


def idna_normalize(host: str) -> str:
    """Return a lowercase, IDNA-normalized host name."""

    h = (host or "").strip().rstrip(".").lower()
    if not h:
        return ""
    try:
        h = h.encode("idna").decode("ascii")
    except Exception:
        pass
    return h


def normalize_url(u: str) -> str:
    """Normalize a URL for cache keys.

    - Avoid rewriting path characters (path-sensitive sites can 404)
    - Lower-case host
    - Remove default ports
    """
    try:
        raw = (u or "").strip()
        p = urlparse(raw)
        host = idna_normalize(p.hostname) if p.hostname else None
        netloc = host if host else p.netloc
        if p.port and not ((p.scheme == "http" and p.port == 80) or (p.scheme == "https" and p.port == 443)):
            netloc = f"{netloc}:{p.port}"
        return urlunparse(p._replace(netloc=netloc))
    except ValueError:
        return u or ""


def hostname_of(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def site_label(url: str) -> str:
    """Host without a leading ``www.``; empty when the URL has no host."""

    host = hostname_of(url)
    if host.startswith("www."):
        host = host[4:]
    return host


def primary_label(domain: str) -> str:
    """Domain minus ``www.`` and one common TLD (``cardekho.com`` -> ``cardekho``)."""

    d = (domain or "").strip().lower()
    if d.startswith("www."):
        d = d[4:]
    return _TLD_RE.sub("", d)


def is_http_url(value: str) -> bool:
    return bool(value) and value.lower().startswith("http")


def strip_scheme(url: str) -> str:
    return _SCHEME_RE.sub("", url or "")


def favicon_url(url: str) -> Optional[str]:
    host = hostname_of(url)
    if not host:
        return None
    return FAVICON_ENDPOINT.format(domain=host)


def is_favicon(src: Optional[str]) -> bool:
    """True for favicon/placeholder images that enrichment may replace.

    Substring heuristic: any URL containing ``favicon`` matches, including
    legitimate images that happen to carry the word.
    """

    return bool(src) and bool(_FAVICON_RE.search(src or ""))


def is_local_endpoint(url: Optional[str]) -> bool:
    return hostname_of(url or "") in LOCAL_PROXY_HOSTS


def collect_environment_warnings() -> List[Dict[str, Any]]:
    """Return actionable warnings about the runtime environment."""

    warnings: List[Dict[str, Any]] = []
    if os.getenv("QUIETCAPTURE_PROXY_DISABLE", "0") not in {"", "0", "false", "no", "off"}:
        warnings.append(
            {
                "code": "proxy_disabled",
                "message": "Fast remote path disabled; resolution starts with direct fetch.",
                "remedy": "Unset QUIETCAPTURE_PROXY_DISABLE and run `quietcapture proxy`.",
            }
        )
    if os.getenv("QUIETCAPTURE_READ_PROXY_DISABLE", "0") not in {"", "0", "false", "no", "off"}:
        warnings.append(
            {
                "code": "read_proxy_disabled",
                "message": "r.jina.ai fallback disabled; blocked pages will fail.",
                "remedy": "Unset QUIETCAPTURE_READ_PROXY_DISABLE.",
            }
        )
    if importlib.util.find_spec("PIL") is None:
        warnings.append(
            {
                "code": "pillow_missing",
                "message": "Pillow is not importable; every image candidate will be rejected.",
                "remedy": "pip install Pillow",
            }
        )
    return warnings


def sanity_check() -> None:
    assert idna_normalize("ExAmple.COM") == "example.com"
    assert site_label("https://www.Example.com/a") == "example.com"
    assert primary_label("www.cardekho.com") == "cardekho"
    assert strip_scheme("https://example.com/x") == "example.com/x"
    assert normalize_url("https://EXAMPLE.com:443/A") == "https://example.com/A"
    assert is_favicon("https://www.google.com/s2/favicons?domain=a.com&sz=64")
    assert not is_favicon("https://cdn.example.com/hero.jpg")


sanity_check()

__all__ = [
    "idna_normalize",
    "normalize_url",
    "hostname_of",
    "site_label",
    "primary_label",
    "is_http_url",
    "strip_scheme",
    "favicon_url",
    "is_favicon",
    "is_local_endpoint",
    "collect_environment_warnings",
    "sanity_check",
]
