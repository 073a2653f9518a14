"""Failure kinds surfaced to API callers.

Every layer maps its own faults onto one of these classes before the
orchestrator returns, so the HTTP layer only ever renders a ``JobError``.
"""

from __future__ import annotations


class JobError(Exception):
    kind = "InternalError"
    status_code = 500

    def __init__(self, message: str, logs: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.logs = logs


class MalformedRequest(JobError):
    kind = "MalformedRequest"
    status_code = 400


class EmptySource(JobError):
    kind = "EmptySource"
    status_code = 400


class PayloadTooLarge(JobError):
    kind = "PayloadTooLarge"
    status_code = 413


class SandboxEnvironmentError(JobError):
    kind = "EnvironmentError"


class CompilationFailed(JobError):
    kind = "CompilationFailed"


class NoArtifactsProduced(JobError):
    kind = "NoArtifactsProduced"


class ExpectedOutputMissing(JobError):
    kind = "ExpectedOutputMissing"


class InternalError(JobError):
    kind = "InternalError"
