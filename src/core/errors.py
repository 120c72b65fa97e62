"""Error taxonomy for submissions and outbound tool calls."""

from __future__ import annotations


class SubmissionError(RuntimeError):
    """Base error for failures surfaced synchronously to the submitter."""

    stage: str = "unknown"
    status_code: int = 500


class InputValidationError(SubmissionError):
    stage = "input"
    status_code = 400


class CredentialError(SubmissionError):
    stage = "credential"
    status_code = 400


class TaskCreationError(SubmissionError):
    stage = "create"
    status_code = 502


class ToolCallError(RuntimeError):
    """An outbound MCP tool call failed (transport, protocol or tool error)."""

    def __init__(self, message: str, *, tool: str | None = None, retryable: bool = True) -> None:
        super().__init__(message)
        self.tool = tool
        self.retryable = retryable
