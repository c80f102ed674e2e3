from pathlib import Path

import requests

from quietcapture.workflows import doctor, enrich_utils
from quietcapture.workflows.enrich_config import DEFAULT_PROXY_URL, EnrichConfig


def test_collect_environment_warnings_proxy_disabled(monkeypatch):
    monkeypatch.setenv("QUIETCAPTURE_PROXY_DISABLE", "1")
    monkeypatch.delenv("QUIETCAPTURE_READ_PROXY_DISABLE", raising=False)
    codes = {item.get("code") for item in enrich_utils.collect_environment_warnings()}
    assert "proxy_disabled" in codes
    assert "read_proxy_disabled" not in codes


def test_collect_environment_warnings_pillow_missing(monkeypatch):
    monkeypatch.setattr(enrich_utils.importlib.util, "find_spec", lambda name: None)
    codes = {item.get("code") for item in enrich_utils.collect_environment_warnings()}
    assert "pillow_missing" in codes


def test_config_from_env(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("QUIETCAPTURE_PROXY_URL", "https://proxy.example.net/fetch")
    monkeypatch.setenv("QUIETCAPTURE_FAST_PROXY_ANY_HOST", "yes")
    monkeypatch.setenv("QUIETCAPTURE_READ_PROXY_DISABLE", "1")
    monkeypatch.setenv("QUIETCAPTURE_CACHE_PATH", str(tmp_path / "c.json"))
    monkeypatch.setenv("QUIETCAPTURE_MAX_ATTEMPTS", "0")
    monkeypatch.delenv("QUIETCAPTURE_PROXY_DISABLE", raising=False)

    cfg = EnrichConfig.from_env()

    assert cfg.proxy_url == "https://proxy.example.net/fetch"
    assert cfg.fast_proxy_any_host is True
    assert cfg.read_proxy_enabled is False
    assert cfg.cache_path == tmp_path / "c.json"
    assert cfg.max_auto_attempts == 1


def test_config_proxy_disable_wins(monkeypatch):
    monkeypatch.delenv("QUIETCAPTURE_PROXY_URL", raising=False)
    monkeypatch.setenv("QUIETCAPTURE_PROXY_DISABLE", "true")
    assert EnrichConfig.from_env().proxy_enabled is False
    monkeypatch.setenv("QUIETCAPTURE_PROXY_DISABLE", "0")
    assert EnrichConfig.from_env().proxy_url == DEFAULT_PROXY_URL


def test_doctor_report_flags_unreachable_proxy(monkeypatch, tmp_path: Path):
    def refuse(url, timeout):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(doctor.requests, "get", refuse)
    cfg = EnrichConfig(cache_path=tmp_path / "c.json", store_path=tmp_path / "s.json")

    report = doctor.build_doctor_report(config=cfg)

    checks = {c["name"]: c for c in report["checks"]}
    assert checks["metadata_proxy"]["status"] == "missing"
    assert checks["QUIETCAPTURE_CACHE_PATH"]["status"] == "ok"
    assert report["ok"] is False
    text = doctor.format_doctor_report(report)
    assert text.startswith("QuietCapture doctor")
    assert "quietcapture proxy" in text


def test_doctor_report_accepts_proxy_answering_400(monkeypatch, tmp_path: Path):
    class Resp:
        status_code = 400

    monkeypatch.setattr(doctor.requests, "get", lambda url, timeout: Resp())
    cfg = EnrichConfig(cache_path=tmp_path / "c.json", store_path=None)

    report = doctor.build_doctor_report(config=cfg)

    checks = {c["name"]: c for c in report["checks"]}
    assert checks["metadata_proxy"]["status"] == "ok"
    assert checks["metadata_proxy"]["detail"] == "answered HTTP 400"
    assert checks["QUIETCAPTURE_STORE_PATH"]["detail"] == "in-memory only"
