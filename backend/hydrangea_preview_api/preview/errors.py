from __future__ import annotations


class PreviewError(Exception):
    """Base class for failures that move a preview into the Failed state."""

    kind = "preview"
    default_reason = "Preview failed"

    def __init__(self, reason: str | None = None, *, detail: str | None = None) -> None:
        self.reason = reason or self.default_reason
        self.detail = detail
        super().__init__(self.reason if not detail else f"{self.reason}: {detail}")


class AcquisitionFailure(PreviewError):
    kind = "acquisition"
    default_reason = "Failed to load file"


class DecodeFailure(PreviewError):
    kind = "decode"
    default_reason = "Failed to decode file"


class DisplaySurfaceFailure(PreviewError):
    kind = "display"
    default_reason = "Failed to display file"
