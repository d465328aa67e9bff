from __future__ import annotations

import time
from dataclasses import dataclass

import requests
from bs4 import BeautifulSoup


class HttpProbeError(Exception):
    pass


@dataclass(frozen=True)
class ProbeResult:
    status_code: int
    url: str
    title: str | None
    elapsed_ms: int


def extract_title(html: str) -> str | None:
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    if soup.title is None:
        return None
    title = " ".join(soup.title.get_text().split())
    return title or None


class HttpProbe:
    def __init__(self, url: str, timeout_sec: int = 10, session: requests.Session | None = None):
        if not url.strip():
            raise ValueError("url must not be empty")
        self.url = url.strip()
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "dualclock-probe/1.0"})

    def check(self) -> ProbeResult:
        started = time.monotonic()
        try:
            response = self.session.get(self.url, timeout=self.timeout_sec, allow_redirects=True)
        except requests.RequestException as exc:
            raise HttpProbeError(f"HTTP request failed: {exc}") from exc
        elapsed_ms = int((time.monotonic() - started) * 1000)

        content_type = response.headers.get("Content-Type", "")
        title = extract_title(response.text) if "html" in content_type.lower() else None
        return ProbeResult(
            status_code=response.status_code,
            url=response.url,
            title=title,
            elapsed_ms=max(0, elapsed_ms),
        )


def format_probe_result(result: ProbeResult) -> str:
    label = result.title or result.url
    return f"{result.status_code} {label} ({result.elapsed_ms}ms)"
