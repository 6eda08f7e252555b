"""Unit tests for the URL validation gate."""

import pytest

from shortener.enums import RejectReason
from shortener.validation import URLValidator, ValidationResult


@pytest.fixture
def gate():
    return URLValidator(blocked_domains=["phishing.example.com", "Malware.Example.com."], max_length=100)


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com",
        "http://example.com/path?q=1#frag",
        "https://sub.domain.example.org:8443/a/b",
    ],
)
def test_accepts_http_urls(gate, url):
    result = gate.validate(url)
    assert result
    assert result.reason is None


@pytest.mark.parametrize(
    "url, reason",
    [
        ("", RejectReason.EMPTY),
        ("   ", RejectReason.EMPTY),
        ("https://example.com/" + "a" * 100, RejectReason.TOO_LONG),
        ("http://[::1", RejectReason.MALFORMED),
        ("not-a-url", RejectReason.UNSUPPORTED_SCHEME),
        ("ftp://example.com/file", RejectReason.UNSUPPORTED_SCHEME),
        ("javascript:alert(1)", RejectReason.UNSUPPORTED_SCHEME),
        ("https://", RejectReason.MISSING_HOST),
        ("http://exa mple.com", RejectReason.MALFORMED),
        ("https://phishing.example.com/login", RejectReason.BLOCKED_DOMAIN),
        ("https://login.phishing.example.com", RejectReason.BLOCKED_DOMAIN),
        ("https://malware.example.com", RejectReason.BLOCKED_DOMAIN),
    ],
)
def test_rejections_carry_reason(gate, url, reason):
    result = gate.validate(url)
    assert not result
    assert result.reason == reason


def test_lookalike_domain_is_not_blocked(gate):
    assert gate.validate("https://notphishing.example.com")


def test_no_blocklist_by_default():
    assert URLValidator().validate("https://phishing.example.com")


def test_result_is_truthy_only_when_accepted():
    assert ValidationResult(True)
    assert not ValidationResult(False, RejectReason.EMPTY)
