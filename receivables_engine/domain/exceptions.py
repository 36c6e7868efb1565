"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class TransportError(DomainException):
    """Accounting system is unreachable or returned an HTTP error (retryable)"""

    retryable = True


class FetchTimeoutError(TransportError):
    """Fetch exceeded the configured timeout"""

    pass


class AuthenticationError(DomainException):
    """Credential is missing or was rejected (401/403); not retried"""

    retryable = False


class ParseError(DomainException):
    """Response is not well-formed XML or lacks the header/body sections"""

    retryable = False


class FetchCancelledError(DomainException):
    """Fetch was superseded by a newer fetch for the same query"""

    pass


class InvalidBucketConfigError(DomainException):
    """Aging bucket configuration is unusable"""

    pass


class CacheStoreError(DomainException):
    """Durable cache store failed; callers treat it as a miss"""

    pass
