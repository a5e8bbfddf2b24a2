from __future__ import annotations


class RenderError(RuntimeError):
    pass


class RecognitionError(RuntimeError):
    pass


class ConversionError(RuntimeError):
    stage = "conversion"

    def __init__(self, message: str, *, page_number: int | None = None, stage: str | None = None):
        if stage is not None:
            self.stage = stage
        self.page_number = page_number
        if page_number is not None:
            message = f"Page {page_number} ({self.stage}): {message}"
        super().__init__(message)


class InputError(ConversionError):
    stage = "input"


class OutputError(ConversionError):
    stage = "output"


class PageError(ConversionError):
    stage = "page"


class RecognitionExhaustedError(ConversionError):
    stage = "recognition"

    def __init__(
        self,
        message: str,
        *,
        page_number: int | None = None,
        attempts: int = 0,
        last_error: BaseException | None = None,
    ):
        self.attempts = attempts
        self.last_error = last_error
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message, page_number=page_number)


class NoRedactionsError(ConversionError):
    stage = "redaction"
