from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional

import typer

from .core.keys import (
    K_BUCKET_ID,
    K_ID,
    K_IMAGE,
    K_META_ATTEMPTS,
    K_META_STATUS,
    K_SITE,
    K_TITLE,
    K_URL,
)
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.enrich_config import EnrichConfig
from .workflows.errors import ResolutionExhausted
from .workflows.meta_cache import CacheEntry, EnrichmentCache
from .workflows.orchestrator import EnrichmentOrchestrator
from .workflows.resolver import MetadataResolver
from .workflows.store import CaptureItem, CaptureStore

app = typer.Typer(add_help_option=False, no_args_is_help=False)
cache_app = typer.Typer(add_help_option=True, help="Inspect or clear the metadata cache.")
app.add_typer(cache_app, name="cache")


def _minimal_help() -> str:
    return """QuietCapture (metadata enrichment CLI)

Usage:
  quietcapture resolve <url> [--json] [--no-cache]
  quietcapture quick <url>
  quietcapture capture <url> [--bucket <ID>] [--no-quick]
  quietcapture retry <item-id>
  quietcapture cache show|clear
  quietcapture proxy [--host <HOST>] [--port <PORT>]
  quietcapture doctor

Common options:
  --verbose, -v   Debug logging (per-strategy failures, probe timeouts).

Discoverability:
  --help-full     Expanded help + env vars + artifacts.
  --find <query>  Search commands, flags, env vars, artifacts.
  --doctor        Run environment diagnostics and exit.
"""


def _help_full() -> str:
    return """QuietCapture enrichment CLI (best-effort)

Commands:
  resolve        Resolve a URL to {title, image, site} (cache first unless --no-cache).
  quick          Run the quick title/image probes only.
  capture        Save a URL into a bucket and enrich it in place.
  retry          Re-arm enrichment for a saved item.
  cache show     Print the metadata cache as JSON.
  cache clear    Drop every cached entry.
  proxy          Serve the metadata proxy (GET /fetch?url=...).
  doctor         Print environment and dependency diagnostics.

Resolution chain:
  remote_proxy -> direct -> remote_proxy_retry -> read_proxy (r.jina.ai)

Artifacts:
  run/quietcapture/meta_cache.json   Metadata cache (meta_cache_v1).
  run/quietcapture/capture_db.json   Buckets and items (capture_app_db_v5).

Important env vars:
  QUIETCAPTURE_PROXY_URL
  QUIETCAPTURE_PROXY_DISABLE
  QUIETCAPTURE_FAST_PROXY_ANY_HOST
  QUIETCAPTURE_READ_PROXY_DISABLE
  QUIETCAPTURE_USER_AGENT
  QUIETCAPTURE_CACHE_PATH
  QUIETCAPTURE_STORE_PATH
  QUIETCAPTURE_MAX_ATTEMPTS
  QUIETCAPTURE_PROXY_PORT

Troubleshooting:
  - If the proxy is not running, resolution starts with a direct fetch.
  - If Pillow is missing, every image candidate is rejected.
"""


_FIND_INDEX = [
    ("command", "resolve", "Resolve a URL to title, image and site."),
    ("command", "quick", "Run the quick title/image probes only."),
    ("command", "capture", "Save a URL into a bucket and enrich it."),
    ("command", "retry", "Re-arm enrichment for a saved item."),
    ("command", "cache show", "Print the metadata cache."),
    ("command", "cache clear", "Drop every cached entry."),
    ("command", "proxy", "Serve the metadata proxy."),
    ("command", "doctor", "Print environment and dependency diagnostics."),
    ("flag", "--json", "Print the result as JSON."),
    ("flag", "--no-cache", "Bypass the metadata cache."),
    ("flag", "--bucket", "Target bucket id (default: last used)."),
    ("flag", "--no-quick", "Skip the quick probes on capture."),
    ("flag", "--host", "Proxy bind host."),
    ("flag", "--port", "Proxy bind port."),
    ("flag", "--verbose", "Debug logging."),
    ("flag", "--help-full", "Expanded help, env vars, artifacts."),
    ("flag", "--find", "Search commands, flags, env vars, artifacts."),
    ("flag", "--doctor", "Run environment diagnostics and exit."),
    ("env", "QUIETCAPTURE_PROXY_URL", "Metadata proxy endpoint."),
    ("env", "QUIETCAPTURE_PROXY_DISABLE", "Skip both proxy strategies."),
    ("env", "QUIETCAPTURE_FAST_PROXY_ANY_HOST", "Use the fast proxy path for non-local endpoints."),
    ("env", "QUIETCAPTURE_READ_PROXY_DISABLE", "Skip the r.jina.ai fallback."),
    ("env", "QUIETCAPTURE_USER_AGENT", "User-Agent for direct fetches."),
    ("env", "QUIETCAPTURE_CACHE_PATH", "Override metadata cache path."),
    ("env", "QUIETCAPTURE_STORE_PATH", "Override capture store path."),
    ("env", "QUIETCAPTURE_MAX_ATTEMPTS", "Automatic enrichment attempts per item."),
    ("env", "QUIETCAPTURE_PROXY_PORT", "Default port for `quietcapture proxy`."),
    ("artifact", "meta_cache.json", "Metadata cache."),
    ("artifact", "capture_db.json", "Buckets and items."),
]


def _run_find(query: str) -> str:
    needle = (query or "").strip().lower()
    if not needle:
        return ""
    lines = []
    for category, name, desc in _FIND_INDEX:
        haystack = f"{category} {name} {desc}".lower()
        if needle in haystack:
            lines.append(f"{category} {name} - {desc}")
    return "\n".join(lines)


def _item_summary(item: CaptureItem) -> Dict[str, Any]:
    return {
        K_ID: item.id,
        K_BUCKET_ID: item.bucket_id,
        K_URL: item.url,
        K_TITLE: item.title,
        K_IMAGE: item.image,
        K_SITE: item.site,
        K_META_STATUS: item.meta_status.value,
        K_META_ATTEMPTS: item.meta_attempts,
    }


def _emit(payload: Dict[str, Any], json_out: bool) -> None:
    if json_out:
        sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")
        return
    for key, value in payload.items():
        typer.echo(f"{key}: {value if value is not None else '-'}")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    help_full: bool = typer.Option(False, "--help-full", is_eager=True, help="Show expanded help."),
    find: Optional[str] = typer.Option(None, "--find", is_eager=True, help="Search commands, flags, env vars, artifacts."),
    doctor: bool = typer.Option(False, "--doctor", is_eager=True, help="Run environment diagnostics and exit."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if help_full:
        typer.echo(_help_full())
        raise typer.Exit(code=0)
    if find is not None:
        output = _run_find(find)
        if output:
            typer.echo(output)
        raise typer.Exit(code=0)
    if doctor:
        report = build_doctor_report()
        typer.echo(format_doctor_report(report))
        raise typer.Exit(code=0 if report.get("ok", True) else 2)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


@app.command("doctor", add_help_option=True)
def doctor_cmd() -> None:
    """Print environment and dependency diagnostics."""
    report = build_doctor_report()
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("resolve", add_help_option=True)
def resolve_cmd(
    url: str = typer.Argument(..., help="URL to resolve."),
    json_out: bool = typer.Option(False, "--json", help="Print the result as JSON."),
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the metadata cache."),
) -> None:
    config = EnrichConfig.from_env()
    cache = EnrichmentCache(config.cache_path)
    cached = None if no_cache else cache.get(url)
    if cached is not None:
        _emit({"url": url, **cached.to_dict(), "source": "cache"}, json_out)
        raise typer.Exit(code=0)

    async def _resolve() -> Dict[str, Any]:
        async with MetadataResolver(config) as resolver:
            resolved = await resolver.resolve(url)
        return resolved.to_dict()

    try:
        payload = asyncio.run(_resolve())
    except ResolutionExhausted as exc:
        if json_out:
            sys.stdout.write(json.dumps({"url": url, "error": str(exc), "attempts": exc.attempts}) + "\n")
        else:
            typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)
    if not no_cache:
        cache.put(url, CacheEntry(payload["title"], payload["image"], payload["site"]))
    _emit({"url": url, **payload}, json_out)


@app.command("quick", add_help_option=True)
def quick_cmd(
    url: str = typer.Argument(..., help="URL to probe."),
    json_out: bool = typer.Option(False, "--json", help="Print the result as JSON."),
) -> None:
    """Run the quick title/image probes only."""
    config = EnrichConfig.from_env()

    async def _probe() -> Dict[str, Any]:
        async with MetadataResolver(config) as resolver:
            title, image = await asyncio.gather(resolver.fetch_title_quick(url), resolver.fetch_image_quick(url))
        return {"url": url, "title": title, "image": image}

    _emit(asyncio.run(_probe()), json_out)


@app.command("capture", add_help_option=True)
def capture_cmd(
    url: str = typer.Argument(..., help="URL to save."),
    bucket: Optional[str] = typer.Option(None, "--bucket", help="Target bucket id (default: last used)."),
    no_quick: bool = typer.Option(False, "--no-quick", help="Skip the quick probes."),
    json_out: bool = typer.Option(False, "--json", help="Print the item as JSON."),
) -> None:
    config = EnrichConfig.from_env()
    store = CaptureStore(config.store_path)
    bucket_id = bucket or store.last_used_bucket_id
    if store.get_bucket(bucket_id) is None:
        typer.echo(f"error: unknown bucket {bucket_id}", err=True)
        raise typer.Exit(code=2)

    async def _capture() -> CaptureItem:
        async with MetadataResolver(config) as resolver:
            orchestrator = EnrichmentOrchestrator(store, EnrichmentCache(config.cache_path), resolver, config)
            item = await orchestrator.capture(url, bucket_id, quick=not no_quick)
            await orchestrator.drain()
            await orchestrator.shutdown()
        return item

    item = asyncio.run(_capture())
    _emit(_item_summary(item), json_out)


@app.command("retry", add_help_option=True)
def retry_cmd(
    item_id: str = typer.Argument(..., help="Item id to re-enrich."),
    json_out: bool = typer.Option(False, "--json", help="Print the item as JSON."),
) -> None:
    config = EnrichConfig.from_env()
    store = CaptureStore(config.store_path)
    if store.get(item_id) is None:
        typer.echo(f"error: unknown item {item_id}", err=True)
        raise typer.Exit(code=2)

    async def _retry() -> Optional[CaptureItem]:
        async with MetadataResolver(config) as resolver:
            orchestrator = EnrichmentOrchestrator(store, EnrichmentCache(config.cache_path), resolver, config)
            item = orchestrator.retry(item_id)
            await orchestrator.drain()
            await orchestrator.shutdown()
        return item

    item = asyncio.run(_retry())
    if item is None:
        typer.echo(f"error: item {item_id} has no URL to enrich", err=True)
        raise typer.Exit(code=2)
    _emit(_item_summary(item), json_out)


@cache_app.command("show")
def cache_show() -> None:
    """Print the metadata cache as JSON."""
    cache = EnrichmentCache(EnrichConfig.from_env().cache_path)
    sys.stdout.write(json.dumps(cache.to_dict(), ensure_ascii=False, indent=2) + "\n")


@cache_app.command("clear")
def cache_clear() -> None:
    """Drop every cached entry."""
    cache = EnrichmentCache(EnrichConfig.from_env().cache_path)
    typer.echo(f"cleared {cache.clear()} entries")


@app.command("proxy", add_help_option=True)
def proxy_cmd(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind host."),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (default QUIETCAPTURE_PROXY_PORT or 4000)."),
) -> None:
    """Serve the metadata proxy."""
    from .tools.metadata_proxy import serve

    serve(host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    app()
