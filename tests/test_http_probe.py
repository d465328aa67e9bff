import pytest
import requests

from http_probe import HttpProbe, HttpProbeError, ProbeResult, extract_title, format_probe_result


class FakeResponse:
    def __init__(self, status_code=200, url="https://example.test/", text="", content_type="text/html"):
        self.status_code = status_code
        self.url = url
        self.text = text
        self.headers = {"Content-Type": content_type}


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.headers = {}
        self.calls = []

    def get(self, url, timeout, allow_redirects):
        self.calls.append({"url": url, "timeout": timeout, "allow_redirects": allow_redirects})
        if self.error is not None:
            raise self.error
        return self.response


def test_check_reports_status_and_title():
    session = FakeSession(
        response=FakeResponse(text="<html><head><title>  Status\n Page </title></head></html>")
    )
    probe = HttpProbe("https://example.test/", timeout_sec=3, session=session)

    result = probe.check()

    assert result.status_code == 200
    assert result.title == "Status Page"
    assert result.elapsed_ms >= 0
    assert session.calls == [{"url": "https://example.test/", "timeout": 3, "allow_redirects": True}]
    assert session.headers["User-Agent"].startswith("dualclock-probe")


def test_check_skips_title_for_non_html():
    session = FakeSession(response=FakeResponse(text='{"ok": true}', content_type="application/json"))
    result = HttpProbe("https://example.test/api", session=session).check()
    assert result.title is None


def test_check_wraps_transport_errors():
    session = FakeSession(error=requests.ConnectionError("refused"))
    with pytest.raises(HttpProbeError) as exc:
        HttpProbe("https://example.test/", session=session).check()
    assert "refused" in str(exc.value)


def test_empty_url_is_rejected():
    with pytest.raises(ValueError):
        HttpProbe("   ", session=FakeSession())


def test_extract_title_handles_missing_title():
    assert extract_title("<html><body>no title</body></html>") is None
    assert extract_title("") is None


def test_format_prefers_title_over_url():
    assert format_probe_result(ProbeResult(200, "https://a.test/", "A", 12)) == "200 A (12ms)"
    assert format_probe_result(ProbeResult(503, "https://a.test/", None, 7)) == "503 https://a.test/ (7ms)"
