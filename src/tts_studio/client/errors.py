from __future__ import annotations


class StudioClientError(RuntimeError):
    """Base for errors surfaced to the person at the keyboard."""


class CloudSynthesisError(StudioClientError):
    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendBusyError(StudioClientError):
    pass


class LocalSpeechError(StudioClientError):
    pass
