"""URL validation gate consumed by the coordinator before minting a code."""

from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlsplit

import validators

from shortener.enums import RejectReason

__all__ = ["URLValidator", "ValidationResult"]

ALLOWED_SCHEMES = frozenset({"http", "https"})


@dataclass(frozen=True)
class ValidationResult:
    accepted: bool
    reason: Optional[RejectReason] = None

    def __bool__(self) -> bool:
        return self.accepted


_ACCEPTED = ValidationResult(accepted=True)


class URLValidator:
    """Accepts absolute http(s) URLs whose host is not on the blocked list.

    A host is blocked when it equals a blocked domain or is a subdomain of
    one; ``evil.phishing.example.com`` is blocked by ``phishing.example.com``.
    """

    def __init__(self, blocked_domains: Iterable[str] = (), max_length: int = 2048):
        self._blocked_domains = tuple(domain.lower().strip(".") for domain in blocked_domains if domain)
        self._max_length = max_length

    def validate(self, url: str) -> ValidationResult:
        if not url or not url.strip():
            return ValidationResult(False, RejectReason.EMPTY)
        if len(url) > self._max_length:
            return ValidationResult(False, RejectReason.TOO_LONG)

        try:
            parts = urlsplit(url)
            hostname = parts.hostname
        except ValueError:
            return ValidationResult(False, RejectReason.MALFORMED)

        if parts.scheme.lower() not in ALLOWED_SCHEMES:
            return ValidationResult(False, RejectReason.UNSUPPORTED_SCHEME)
        if not hostname:
            return ValidationResult(False, RejectReason.MISSING_HOST)
        if not validators.url(url):
            return ValidationResult(False, RejectReason.MALFORMED)
        if self._is_blocked(hostname):
            return ValidationResult(False, RejectReason.BLOCKED_DOMAIN)

        return _ACCEPTED

    def _is_blocked(self, hostname: str) -> bool:
        hostname = hostname.lower().rstrip(".")
        return any(hostname == domain or hostname.endswith("." + domain) for domain in self._blocked_domains)
