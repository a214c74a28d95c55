"""Test doubles shared across the suite."""

from __future__ import annotations

import hashlib
import json
from typing import Any

import httpx

from kiosk_engine.health.models import HealthCheckResult, Severity

BASE_URL = "https://cdn.example.test"
MANIFEST_URL = f"{BASE_URL}/manifest.json"


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeCDN:
    """In-memory HTTP origin served through httpx.MockTransport.

    Supports Range requests and scripted failures per URL.
    """

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.failures: dict[str, int] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, body: bytes) -> str:
        url = f"{BASE_URL}/{path}"
        self.files[url] = body
        return url

    def fail(self, url: str, times: int) -> None:
        self.failures[url] = times

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if self.failures.get(url, 0) > 0:
            self.failures[url] -= 1
            return httpx.Response(503, content=b"unavailable")
        if url not in self.files:
            return httpx.Response(404, content=b"not found")
        body = self.files[url]
        range_header = request.headers.get("Range")
        if range_header:
            start = int(range_header.split("=", 1)[1].rstrip("-"))
            if start >= len(body):
                return httpx.Response(416)
            return httpx.Response(206, content=body[start:])
        return httpx.Response(200, content=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def urls(self) -> list[str]:
        return [str(r.url) for r in self.requests]

    def file_requests(self) -> list[str]:
        return [u for u in self.urls() if u != MANIFEST_URL]

    def publish_manifest(self, version: str, entries: list[dict[str, Any]]) -> dict[str, Any]:
        manifest = {"version": version, "files": entries}
        self.files[MANIFEST_URL] = json.dumps(manifest).encode()
        return manifest

    def entry(self, filename: str, body: bytes, type_: str = "file", checksum: bool = True) -> dict[str, Any]:
        """Host ``body`` and return its manifest entry."""
        url = self.add(f"files/{filename}", body)
        item: dict[str, Any] = {"url": url, "filename": filename, "type": type_}
        if checksum:
            item["checksum"] = sha256(body)
        return item


class FakeSupervisor:
    """Records service calls; services listed in ``broken`` never come back."""

    def __init__(self, running: set[str] | None = None, broken: set[str] | None = None) -> None:
        self.running = set(running or ())
        self.broken = set(broken or ())
        self.restarts: list[str] = []

    def is_running(self, service: str) -> bool:
        return service in self.running

    def start(self, service: str) -> bool:
        if service in self.broken:
            return False
        self.running.add(service)
        return True

    def stop(self, service: str) -> bool:
        self.running.discard(service)
        return True

    def restart(self, service: str) -> bool:
        self.restarts.append(service)
        self.stop(service)
        return self.start(service) and self.is_running(service)


def static_probe(status: Severity, detail: str = ""):
    """A probe that always returns ``status``."""

    def probe(ctx: Any) -> HealthCheckResult:
        return HealthCheckResult(check_name="", status=status, detail=detail or status.name)

    return probe


def all_ok_probes() -> dict[str, Any]:
    return {
        name: static_probe(Severity.OK)
        for name in ("memory", "disk", "network", "app_server", "process", "display")
    }
