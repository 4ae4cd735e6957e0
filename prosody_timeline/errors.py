from __future__ import annotations


class ProsodyError(Exception):
    """Base class for every error raised by the prosody pipeline."""


class EmptyInputError(ProsodyError, ValueError):
    """Input text is empty or whitespace-only; nothing can be timed."""


class RemoteAnalysisError(ProsodyError):
    """The remote analysis call failed or returned an unusable reply."""

    def __init__(self, reason: str, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        message = reason if not detail else f"{reason}: {detail}"
        super().__init__(message)


class MalformedSegmentError(ProsodyError, ValueError):
    """Segment text was emptied by cleanup."""

    def __init__(self, original: str, cleaned: str) -> None:
        self.original = original
        self.cleaned = cleaned
        super().__init__(f"Segment text too short after cleanup: {original!r} -> {cleaned!r}")


class UnknownCategoryError(ProsodyError, ValueError):
    """A label falls outside one of the closed vocabularies."""

    def __init__(self, kind: str, value: object) -> None:
        self.kind = kind
        self.value = value
        super().__init__(f"Unknown {kind}: {value!r}")
