"""
Scan pipeline exceptions.

Provider-level failures are escalated through the platform retry ladder and
never reach the workflow; the workflow only sees step failures, timeouts and
supersession.
"""


class ScanError(Exception):
    """Base class for scan workflow errors."""


class ScanTimeoutError(ScanError):
    """The run exceeded SCAN_TIMEOUT_SECONDS. Not retried."""


class ScanCancelledError(ScanError):
    """A newer scan for the same monitored domain superseded this one."""
    def __init__(self, run_id, active_run_id=None):
        self.run_id = run_id
        self.active_run_id = active_run_id
        super().__init__(f"Scan {run_id} superseded by {active_run_id or 'another scan'}")


class ProviderError(Exception):
    """An LLM or search vendor call failed or is not configured."""
    def __init__(self, provider, message):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class StructuredOutputError(ProviderError):
    """The vendor answered but the payload did not match the schema."""
