"""Typed errors shared across clients and services."""


class EmbeddingError(Exception):
    """Base class for failures of an embedding provider call."""

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class EmbeddingUnavailableError(EmbeddingError):
    """The provider cannot be reached or is not usable (network, timeout, missing credential)."""


class EmbeddingRequestError(EmbeddingError):
    """The provider answered with a non-2xx status."""

    def __init__(self, message: str, provider: str | None = None, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message, provider=provider)
        self.status_code = status_code
        self.body = body


class EmbeddingResponseError(EmbeddingError):
    """The provider answered 2xx but the body does not contain a usable vector."""


class StoreError(Exception):
    """A persistence operation on the memory store failed."""


class IndexingFailedError(Exception):
    """An index-file job finished without success; raised so the queue can retry it."""


class KnowledgeBaseError(Exception):
    """Base class for domain errors surfaced to the HTTP layer."""


class NotFoundError(KnowledgeBaseError):
    pass


class ForbiddenError(KnowledgeBaseError):
    pass


class InvalidRequestError(KnowledgeBaseError):
    pass


class FileTooLargeError(InvalidRequestError):
    pass
