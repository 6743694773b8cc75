from __future__ import annotations

from typing import Any


class ClientVisibleError(Exception):
    """Bad input that is reported back to the caller verbatim."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})


class MissingArgumentError(ClientVisibleError):
    pass


class InvalidArgumentError(ClientVisibleError):
    pass


class UnknownToolError(ClientVisibleError):
    pass


class ConfigurationError(RuntimeError):
    pass


class TransportError(RuntimeError):
    pass


class EmbeddingBackendError(TransportError):
    pass


class DocumentSourceError(TransportError):
    pass


class StorageError(RuntimeError):
    pass


class ChatClientError(RuntimeError):
    pass
