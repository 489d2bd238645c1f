"""
Error types shared across perfbench.

Backend execution failures live next to the connectors
(see perfbench.connectors.base.BackendError).
"""

from typing import Optional


class ConfigurationError(ValueError):
    """A test specification (or the command line) must be fixed by the user."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


class PreconditionFailed(RuntimeError):
    """A test's preconditions are not met; the test is skipped."""

    def __init__(self, test_name: str, reason: str):
        self.test_name = test_name
        self.reason = reason
        super().__init__(f"Preconditions are not fulfilled for test '{test_name}': {reason}")
