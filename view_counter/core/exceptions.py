"""
Custom Exceptions

This module defines custom exceptions for the view counter service.

Benefits:
- Specific error types for each failure scenario (validation, lookup, backing store)
- Endpoints map each type to a precise HTTP status code
- Flush coordinator converts them into reported outcomes instead of faults
"""


class ViewCounterException(Exception):
    """Base exception for view counter service."""
    pass


class ConfigurationError(ViewCounterException):
    """Raised when required settings are missing or inconsistent."""

    def __init__(self, setting_name: str, reason: str = "is not configured"):
        self.setting_name = setting_name
        self.reason = reason
        super().__init__(f"Setting '{setting_name}' {reason}")


class InvalidKeyError(ViewCounterException):
    """Raised when a post id is missing, empty or malformed."""

    def __init__(self, key, reason: str = "Post ID is required"):
        self.key = key
        self.reason = reason
        super().__init__(f"{reason}: {key!r}")


class BackingStoreError(ViewCounterException):
    """Raised when talking to the backing store fails (network, timeout, API errors)."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(f"Backing store error: {message}")


class RecordNotFoundError(ViewCounterException):
    """Raised when no record matches a post id."""

    def __init__(self, key: str, record_type: str = None):
        self.key = key
        self.record_type = record_type
        super().__init__(f"No record found for '{key}'")


class PaginationLimitError(RecordNotFoundError, BackingStoreError):
    """Raised when a paged scan hits the page ceiling before finishing."""

    def __init__(self, record_type: str, max_pages: int, key: str = None):
        self.key = key
        self.record_type = record_type
        self.max_pages = max_pages
        self.original_error = None
        ViewCounterException.__init__(
            self,
            f"Scan of '{record_type}' stopped after {max_pages} pages"
            + (f" while looking for '{key}'" if key else "")
        )


class FlushInProgressError(ViewCounterException):
    """Raised when a flush is triggered while another cycle is running."""

    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Flush already in progress (state: {state})")
