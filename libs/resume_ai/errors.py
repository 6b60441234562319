from __future__ import annotations


class WorkbenchError(Exception):
    status_code = 500

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class InvalidInputError(WorkbenchError):
    status_code = 400


class GenerationError(WorkbenchError):
    """The backend was unreachable or returned no usable text."""

    status_code = 502


class UnparseableOutputError(WorkbenchError):
    """Extraction and repair both failed; carries the raw model text."""

    status_code = 500

    def __init__(self, detail: str, raw_text: str = "") -> None:
        super().__init__(detail)
        self.raw_text = raw_text


class JobNotFoundError(WorkbenchError):
    status_code = 404


class JobCreationError(WorkbenchError):
    status_code = 500


class JobFailedError(WorkbenchError):
    status_code = 500

    def __init__(self, detail: str, name: str = "Error") -> None:
        super().__init__(detail)
        self.name = name


class PollTimeoutError(WorkbenchError):
    status_code = 504
