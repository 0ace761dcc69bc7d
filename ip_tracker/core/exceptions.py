"""
Custom Exceptions

This module defines custom exceptions for the attribution subsystem.

Only the query path raises to its caller. Ingestion catches everything,
so StorageUnavailableError never leaves the event writer.
"""


class IPTrackerException(Exception):
    """Base exception for the IP tracking service."""
    pass


class InvalidQueryParameterError(IPTrackerException):
    """Raised when a query is missing or given an unusable parameter."""

    def __init__(self, parameter: str, reason: str = "is required"):
        self.parameter = parameter
        self.reason = reason
        super().__init__(f"'{parameter}' query parameter {reason}")


class StorageUnavailableError(IPTrackerException):
    """Raised when storage cannot be reached for a write attempt."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(f"Storage unavailable: {message}")


class DatabaseError(IPTrackerException):
    """Raised when database operations fail."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(f"Database error: {message}")


class ServiceUnavailableError(IPTrackerException):
    """Raised when a required service is unavailable."""

    def __init__(self, service_name: str):
        self.service_name = service_name
        super().__init__(f"Service '{service_name}' is unavailable")
