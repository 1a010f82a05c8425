from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import get_current_user_id, verify_api_key
from server.dependencies.errors import to_http_exception
from server.models.requests import FeedbackRequest
from server.models.responses import FeedbackResponse
from shared.exceptions import KnowledgeBaseError

router = APIRouter(prefix="/memory-items", tags=["memory-items"], dependencies=[Depends(verify_api_key)])


@router.post("/{item_id}/feedback", response_model=FeedbackResponse, response_model_by_alias=True)
async def submit_feedback(
    request: Request,
    item_id: str,
    body: FeedbackRequest,
    user_id: str = Depends(get_current_user_id),
) -> FeedbackResponse:
    """Exclude, deprioritize or restore a memory item for retrieval.

    Args:
        request (Request): The FastAPI request object (provides app.state).
        item_id (str): Target memory item.
        body (FeedbackRequest): The feedback action.

    Returns:
        FeedbackResponse: Success flag and the applied action.

    Raises:
        HTTPException: 400 for a malformed id, 404 for an unknown item,
            403 for another user's item.
    """
    try:
        await request.app.state.kb_service.apply_memory_feedback(user_id, item_id, body.action)
    except KnowledgeBaseError as exc:
        raise to_http_exception(exc)
    return FeedbackResponse(success=True, action=body.action)
