"""Title heuristics: normalize scraped titles and infer one from a URL path.

Everything here is advisory. Functions return ``None`` for "no opinion" and
never raise on odd input.
"""

from __future__ import annotations

import re
from typing import List, Optional
from urllib.parse import unquote, urlparse

import ftfy

from .enrich_config import MIN_TITLE_LENGTH, QUICK_TITLE_NOISE, TITLE_BOILERPLATE, URL_PATH_NOISE
from .enrich_utils import hostname_of, primary_label

_BOILERPLATE_RES = [re.compile(r"\b%s\b" % re.escape(word)) for word in TITLE_BOILERPLATE]
_SEPARATORS_RE = re.compile(r"[-|•:/]")
_WORD_START_RE = re.compile(r"\b\w")
_QUICK_PREFIX_RE = re.compile(r"^(%s)\s*[-:|—]\s*" % "|".join(QUICK_TITLE_NOISE), re.I)
_QUICK_SPLIT_RE = re.compile(r"[|\-—:]")
_QUICK_NOISE_RE = re.compile(r"^(%s)\b" % "|".join(QUICK_TITLE_NOISE), re.I)


def _strip_site_token(title: str, domain: str) -> str:
    site = primary_label(domain)
    if not site:
        return title
    try:
        pattern = re.compile(r"\b%s\b" % site)
    except re.error:
        # Hosts with regex metacharacters skip this step.
        return title
    return pattern.sub("", title)


def _dedupe_tokens(text: str) -> str:
    seen = set()
    kept: List[str] = []
    for token in text.split():
        if token in seen:
            continue
        seen.add(token)
        kept.append(token)
    return " ".join(kept)


def normalize_title(raw: Optional[str], domain: str = "") -> Optional[str]:
    """Clean a scraped title for display.

    Lower-cases, drops the ``| Site`` suffix, the site's own name and commerce/news
    boilerplate, then title-cases what is left. Results shorter than three
    characters are rejected.
    """

    if not raw:
        return None
    title = ftfy.fix_text(str(raw)).lower()
    title = title.split("|", 1)[0]
    if domain:
        title = _strip_site_token(title, domain)
    for pattern in _BOILERPLATE_RES:
        title = pattern.sub("", title)
    title = _SEPARATORS_RE.sub(" ", title)
    title = _dedupe_tokens(title).strip()
    if not title:
        return None
    title = _WORD_START_RE.sub(lambda m: m.group(0).upper(), title)
    if len(title) < MIN_TITLE_LENGTH:
        return None
    return title


def infer_title_from_url(url: str) -> Optional[str]:
    """Guess a title from the last meaningful path segments of ``url``."""

    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if not host:
        return None
    parts = [unquote(p) for p in (parsed.path or "").split("/") if p]
    parts = [p for p in parts if p.lower() not in URL_PATH_NOISE]
    if len(parts) >= 2:
        combined = f"{parts[-2]} {parts[-1]}"
    elif len(parts) == 1:
        combined = parts[0]
    else:
        return None
    combined = combined.replace("-", " ").replace("_", " ")
    return normalize_title(combined, host)


def extract_best_title(raw: Optional[str], url: str) -> Optional[str]:
    """Pick the most descriptive segment of a ``<title>`` for quick previews."""

    if not raw:
        return None
    text = " ".join(str(raw).split())
    text = _QUICK_PREFIX_RE.sub("", text)
    parts = [p.strip() for p in _QUICK_SPLIT_RE.split(text) if p.strip()]
    if not parts:
        return None
    cleaned = [p for p in parts if not _QUICK_NOISE_RE.match(p)]
    candidates = cleaned or parts
    chosen = candidates[0]
    for part in candidates[1:]:
        if len(part) > len(chosen):
            chosen = part

    host = hostname_of(url)
    site_token = (host[4:] if host.startswith("www.") else host).split(".")[0]
    if site_token:
        token_re = re.compile(r"\b%s\b" % re.escape(site_token), re.I)
        if token_re.search(chosen):
            chosen = token_re.sub("", chosen, count=1).strip()
    return normalize_title(chosen, host)


__all__ = ["normalize_title", "infer_title_from_url", "extract_best_title"]
