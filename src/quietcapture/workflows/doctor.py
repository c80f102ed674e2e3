from __future__ import annotations

import importlib.util
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from .enrich_config import EnrichConfig
from .enrich_utils import collect_environment_warnings

PROXY_PROBE_TIMEOUT_S = 1.5


def _check_writable(path: Path) -> bool:
    try:
        if path.exists():
            return os.access(path, os.W_OK)
        parent = path.parent
        while not parent.exists():
            if parent == parent.parent:
                return False
            parent = parent.parent
        return os.access(parent, os.W_OK)
    except OSError:
        return False


def _probe_proxy(proxy_url: str, timeout: float = PROXY_PROBE_TIMEOUT_S) -> Optional[int]:
    """Status code of a bare ``GET`` to the proxy, ``None`` when unreachable.

    A healthy proxy answers 400 (``url required``) to a request without ``url``.
    """
    try:
        resp = requests.get(proxy_url, timeout=timeout)
    except requests.RequestException:
        return None
    return resp.status_code


def build_doctor_report(*, config: Optional[EnrichConfig] = None, probe_proxy: bool = True) -> Dict[str, Any]:
    cfg = config or EnrichConfig.from_env()
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "environment_warnings": collect_environment_warnings(),
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    add_check(
        "QUIETCAPTURE_PROXY_URL",
        cfg.proxy_enabled,
        detail=cfg.proxy_url or "fast remote path disabled",
        remedy="Set QUIETCAPTURE_PROXY_URL (default http://localhost:4000/fetch).",
        level="info",
    )
    if cfg.proxy_enabled and probe_proxy:
        status = _probe_proxy(cfg.proxy_url or "")
        add_check(
            "metadata_proxy",
            status is not None,
            detail=f"answered HTTP {status}" if status is not None else "unreachable",
            remedy="Start it with `quietcapture proxy`.",
            level="warn",
        )

    add_check(
        "read_proxy",
        cfg.read_proxy_enabled,
        detail=cfg.read_proxy_prefix if cfg.read_proxy_enabled else "r.jina.ai fallback disabled",
        remedy="Unset QUIETCAPTURE_READ_PROXY_DISABLE.",
        level="info",
    )

    for name, path in (("QUIETCAPTURE_CACHE_PATH", cfg.cache_path), ("QUIETCAPTURE_STORE_PATH", cfg.store_path)):
        if path is None:
            add_check(name, True, detail="in-memory only", level="info")
            continue
        add_check(
            name,
            _check_writable(Path(path)),
            detail=str(path),
            remedy=f"Create the directory or set {name} to a writable location.",
            level="warn",
        )

    pillow_ok = importlib.util.find_spec("PIL") is not None
    add_check(
        "Pillow",
        pillow_ok,
        detail="image validation enabled" if pillow_ok else "every image candidate will be rejected",
        remedy="pip install Pillow",
        level="warn",
    )

    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("QuietCapture doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        detail = check.get("detail")
        lines.append(f"- [{level}] {name}: {status}")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy and status != "ok":
            lines.append(f"  remedy: {remedy}")
    warnings = report.get("environment_warnings") or []
    if warnings:
        lines.append("")
        lines.append("Environment warnings:")
        for warning in warnings:
            code = warning.get("code", "warning")
            message = warning.get("message", "")
            remedy = warning.get("remedy", "")
            lines.append(f"- {code}: {message}")
            if remedy:
                lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"
