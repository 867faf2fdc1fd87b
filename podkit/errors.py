"""Exception hierarchy shared by the stream and forward packages."""

from __future__ import annotations


class PodkitError(Exception):
    """Base class for every error raised by podkit."""


class ApiError(PodkitError):
    """A call against the Kubernetes API failed.

    Raised for listing, watching, log-stream and tunnel establishment
    failures. ``status`` holds the HTTP status code when the API server
    answered at all.
    """

    def __init__(self, operation: str, cause: object, status: int | None = None) -> None:
        super().__init__(f"{operation}: {cause}")
        self.operation = operation
        self.status = status


class ConfigError(PodkitError, ValueError):
    """A stream or forward configuration failed validation."""


class ForwardTimeoutError(PodkitError, TimeoutError):
    """The port-forward did not become ready before its deadline."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"port forward not ready after {timeout:g}s")
        self.timeout = timeout


class NoPodsFoundError(PodkitError):
    """No schedulable pod matched the selector."""

    def __init__(self, namespace: str, label_selector: str) -> None:
        super().__init__(f"no pods found in {namespace!r} matching {label_selector!r}")
        self.namespace = namespace
        self.label_selector = label_selector


class LogParseError(PodkitError):
    """A log line did not start with an RFC3339 timestamp."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(f"unable to decode log timestamp: {reason}")
        self.line = line
