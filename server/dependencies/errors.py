from fastapi import HTTPException

from shared.exceptions import ForbiddenError, InvalidRequestError, KnowledgeBaseError, NotFoundError


def to_http_exception(exc: KnowledgeBaseError) -> HTTPException:
    """Map a domain error to the HTTP status the API reports for it."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ForbiddenError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, InvalidRequestError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
