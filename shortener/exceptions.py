"""Exceptions raised by the URL shortener core.

Every error the request layer can observe derives from ShortenerError and
carries a stable ``error_code`` plus the HTTP status the API maps it to.
Fast-store failures are modelled as CacheError so the coordinator can catch
exactly that class when falling back to the durable store.

Classes:
    ShortenerError:
        Base class for all application-specific errors.

    InvalidURL:
        The URL validation gate rejected the input.

    AliasTaken:
        The requested custom alias is already bound to a record.

    AliasReserved:
        The requested custom alias is a code the ID generator could mint.

    InvalidNodeID:
        A generator was configured with a node id outside [0, 1023].

    ClockRegression:
        The wall clock moved backwards; the caller may retry.

    CreateFailed:
        Durable persistence failed after a code was minted.

    NotFound:
        The code does not exist in either store.

    Expired:
        The code exists but its expiry has passed.

    DuplicateCode:
        The durable store rejected an insert on its unique code constraint.

    CacheError:
        The fast store is unavailable or returned an error.

Example:
    >>> from shortener.exceptions import AliasTaken
    >>> raise AliasTaken("docs")
    Traceback (most recent call last):
        ...
    shortener.exceptions.AliasTaken: Custom alias 'docs' is already taken
"""

__all__ = [
    "ShortenerError",
    "InvalidURL",
    "AliasTaken",
    "AliasReserved",
    "InvalidNodeID",
    "ClockRegression",
    "CreateFailed",
    "NotFound",
    "Expired",
    "DuplicateCode",
    "CacheError",
]


class ShortenerError(Exception):
    """Base exception for all application-specific errors."""

    error_code = "app:shortener_error"
    status_code = 500


class InvalidURL(ShortenerError):
    """Raised when the validation gate rejects a URL."""

    error_code = "request:invalid_url"
    status_code = 400

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL ({reason})")


class AliasTaken(ShortenerError):
    """Raised when a custom alias is already bound to a record."""

    error_code = "request:alias_taken"
    status_code = 409

    def __init__(self, alias: str) -> None:
        self.alias = alias
        super().__init__(f"Custom alias '{alias}' is already taken")


class AliasReserved(ShortenerError):
    """Raised when a custom alias is a code the ID generator could mint."""

    error_code = "request:alias_reserved"
    status_code = 409

    def __init__(self, alias: str) -> None:
        self.alias = alias
        super().__init__(f"Custom alias '{alias}' is reserved for generated codes")


class InvalidNodeID(ShortenerError):
    """Raised when an ID generator is constructed with an out-of-range node id."""

    error_code = "config:invalid_node_id"
    status_code = 500

    def __init__(self, node_id: object, max_node_id: int) -> None:
        self.node_id = node_id
        super().__init__(f"Node id must be an integer in [0, {max_node_id}], got {node_id!r}")


class ClockRegression(ShortenerError):
    """Raised when the clock is observed moving backwards."""

    error_code = "idgen:clock_regression"
    status_code = 503

    def __init__(self, last_timestamp: int, current_timestamp: int) -> None:
        self.last_timestamp = last_timestamp
        self.current_timestamp = current_timestamp
        self.drift_ms = last_timestamp - current_timestamp
        super().__init__(f"Clock moved backwards by {self.drift_ms}ms; refusing to generate id")


class CreateFailed(ShortenerError):
    """Raised when the durable insert fails after a code was minted."""

    error_code = "store:create_failed"
    status_code = 500

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Failed to persist short link '{code}'")


class NotFound(ShortenerError):
    """Raised when a code does not exist."""

    error_code = "request:not_found"
    status_code = 404

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Short link '{code}' not found")


class Expired(ShortenerError):
    """Raised when a code exists but has expired."""

    error_code = "request:expired"
    status_code = 410

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Short link '{code}' has expired")


class DuplicateCode(ShortenerError):
    """Raised by the durable store on a unique-constraint violation for code."""

    error_code = "store:duplicate_code"
    status_code = 409

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Short code '{code}' already exists")


class CacheError(ShortenerError):
    """Raised when the fast store is unavailable or errors.

    e.g. connection refused, timeouts, OOM, corrupted payloads.
    """

    error_code = "cache:cache_error"
    status_code = 503
