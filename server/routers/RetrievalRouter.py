from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import get_current_user_id, verify_api_key
from server.models.requests import RetrieveRequest
from server.models.responses import RagStatusResponse, RetrievedMemoryResponse, RetrieveResponse
from services.retrieval.RetrievalService import (
    format_memories_for_prompt,
    get_memory_item_ids,
    inject_context_into_system_prompt,
)
from services.retrieval.effective_config import compute_effective_rag_config
from shared.models.rag import RagMode, RagOverrides

router = APIRouter(prefix="/rag", tags=["rag"], dependencies=[Depends(verify_api_key)])


@router.post("/retrieve", response_model=RetrieveResponse, response_model_by_alias=True)
async def retrieve(
    request: Request,
    body: RetrieveRequest,
    user_id: str = Depends(get_current_user_id),
) -> RetrieveResponse:
    """Retrieve context for one chat turn.

    Resolves the effective mode and tag filters from the request, the stored
    conversation settings, the character default and the global settings,
    then runs the ranked search and renders the context block. Retrieval
    failures degrade to an empty result; they never fail the request.

    Args:
        request (Request): The FastAPI request object (provides app.state).
        body (RetrieveRequest): Query, character and overrides.

    Returns:
        RetrieveResponse: Memories, effective top-K, context block and memory ids.
            When a system prompt is sent, it is returned with the context appended.
    """
    retrieval_service = request.app.state.retrieval_service
    effective = compute_effective_rag_config(
        request=RagOverrides(rag_mode=body.rag_mode, tag_filters=body.tag_filters),
        conversation=body.conversation,
        character_mode=body.character_rag_mode,
        global_settings=request.app.state.global_rag_settings,
    )
    rag_mode = effective.rag_mode if effective.enabled else RagMode.IGNORE

    result = await retrieval_service.retrieve_relevant_memories(
        user_id=user_id,
        query=body.query,
        character_id=body.character_id,
        top_k=body.top_k,
        rag_mode=rag_mode,
        tag_filters=effective.tag_filters,
    )
    context = format_memories_for_prompt(result.memories)
    system_prompt = None
    if body.system_prompt is not None:
        system_prompt = inject_context_into_system_prompt(body.system_prompt, context)

    return RetrieveResponse(
        query=result.query,
        rag_mode=rag_mode.value,
        top_k=result.top_k,
        memories=[RetrievedMemoryResponse.from_memory(memory) for memory in result.memories],
        memory_ids=get_memory_item_ids(result.memories),
        context=context,
        system_prompt=system_prompt,
    )


@router.get("/status", response_model=RagStatusResponse, response_model_by_alias=True)
async def get_status(request: Request) -> RagStatusResponse:
    status = await request.app.state.embedding_service.check_availability()
    return RagStatusResponse(**status.model_dump())
