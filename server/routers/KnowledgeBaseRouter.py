from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile

from server.dependencies.auth import get_current_user_id, verify_api_key
from server.dependencies.errors import to_http_exception
from server.models.requests import UpdateFileRequest
from server.models.responses import (
    DeleteFileResponse,
    KBConfigSummary,
    KBStatsResponse,
    KnowledgeBaseFileResponse,
    RagStatusResponse,
    UploadResponse,
)
from shared.exceptions import InvalidRequestError, KnowledgeBaseError
from shared.helper.validators import is_valid_uuid, parse_tags
from shared.models.knowledge_base import FileStatus

router = APIRouter(prefix="/knowledge-base", tags=["knowledge-base"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=list[KnowledgeBaseFileResponse], response_model_by_alias=True)
async def list_files(
    request: Request,
    character_id: str = Query(..., alias="characterId"),
    status: FileStatus | None = Query(default=None),
    user_id: str = Depends(get_current_user_id),
) -> list[KnowledgeBaseFileResponse]:
    """List the current user's files for one character, optionally filtered by status."""
    kb_service = request.app.state.kb_service
    indexing_service = request.app.state.indexing_service
    try:
        files = await kb_service.list_character_files(user_id, character_id, status)
    except KnowledgeBaseError as exc:
        raise to_http_exception(exc)
    return [
        KnowledgeBaseFileResponse.from_file(file, chunk_count=await indexing_service.get_file_memory_item_count(file.id))
        for file in files
    ]


@router.post("/upload", status_code=201, response_model=UploadResponse, response_model_by_alias=True)
async def upload_file(
    request: Request,
    file: UploadFile | None = File(default=None),
    character_id: str | None = Form(default=None, alias="characterId"),
    tags: str | None = Form(default=None),
    user_id: str = Depends(get_current_user_id),
) -> UploadResponse:
    """Accept an uploaded document and queue it for indexing.

    Args:
        request (Request): The FastAPI request object (provides app.state).
        file (UploadFile | None): The uploaded document.
        character_id (str | None): Character whose knowledge base receives the file.
        tags (str | None): Comma-separated user tags.

    Returns:
        UploadResponse: The pending file record and the indexing job id.

    Raises:
        HTTPException: 400 for a missing file, invalid character id or an oversized file.
    """
    kb_service = request.app.state.kb_service
    rag_config = request.app.state.rag_config

    if file is None or not file.filename:
        raise to_http_exception(InvalidRequestError("No file provided"))

    # at most one byte past the limit is buffered
    max_size = rag_config.get_max_file_size_bytes()
    data = await file.read(max_size + 1)
    await file.close()

    try:
        kb_file, job_id = await kb_service.accept_upload(
            user_id=user_id,
            character_id=character_id,
            file_name=file.filename,
            data=data,
            tags=parse_tags(tags),
        )
    except KnowledgeBaseError as exc:
        raise to_http_exception(exc)

    return UploadResponse(file=KnowledgeBaseFileResponse.from_file(kb_file), job_id=job_id)


@router.get("/stats/{character_id}", response_model=KBStatsResponse, response_model_by_alias=True)
async def get_stats(
    request: Request,
    character_id: str,
    user_id: str = Depends(get_current_user_id),
) -> KBStatsResponse:
    """Per-character knowledge-base counters plus the embedding provider status."""
    if not is_valid_uuid(character_id):
        raise HTTPException(status_code=400, detail="Invalid characterId")

    rag_config = request.app.state.rag_config
    stats = await request.app.state.indexing_service.get_character_kb_stats(character_id)
    embedding_status = await request.app.state.embedding_service.check_availability()
    return KBStatsResponse(
        character_id=character_id,
        **stats.model_dump(),
        embedding_service=RagStatusResponse(**embedding_status.model_dump()),
        config=KBConfigSummary(
            max_file_size_bytes=rag_config.get_max_file_size_bytes(),
            default_top_k=rag_config.get_default_top_k(),
            chunk_size=rag_config.get_chunk_size(),
        ),
    )


@router.get("/{file_id}", response_model=KnowledgeBaseFileResponse, response_model_by_alias=True)
async def get_file(
    request: Request,
    file_id: str,
    user_id: str = Depends(get_current_user_id),
) -> KnowledgeBaseFileResponse:
    try:
        file = await request.app.state.kb_service.get_user_file(user_id, file_id)
    except KnowledgeBaseError as exc:
        raise to_http_exception(exc)
    chunk_count = await request.app.state.indexing_service.get_file_memory_item_count(file.id)
    return KnowledgeBaseFileResponse.from_file(file, chunk_count=chunk_count)


@router.patch("/{file_id}", response_model=KnowledgeBaseFileResponse, response_model_by_alias=True)
async def update_file(
    request: Request,
    file_id: str,
    body: UpdateFileRequest,
    user_id: str = Depends(get_current_user_id),
) -> KnowledgeBaseFileResponse:
    """Apply a pause, resume, reindex or updateTags action to a file.

    Args:
        request (Request): The FastAPI request object (provides app.state).
        file_id (str): Target file.
        body (UpdateFileRequest): The action and, for updateTags, the new tags.

    Returns:
        KnowledgeBaseFileResponse: The updated file. A reindex also carries
            the job id, or a message when the file is already being processed.

    Raises:
        HTTPException: 404 for an unknown file, 400 for updateTags without tags,
            500 if a reindex job could not be queued.
    """
    kb_service = request.app.state.kb_service
    try:
        if body.action == "pause":
            return KnowledgeBaseFileResponse.from_file(await kb_service.pause_file(user_id, file_id))
        if body.action == "resume":
            return KnowledgeBaseFileResponse.from_file(await kb_service.resume_file(user_id, file_id))
        if body.action == "updateTags":
            if body.tags is None:
                raise InvalidRequestError("tags are required for updateTags")
            return KnowledgeBaseFileResponse.from_file(await kb_service.update_file_tags(user_id, file_id, body.tags))

        file, job_id = await kb_service.reindex_file(user_id, file_id)
    except KnowledgeBaseError as exc:
        raise to_http_exception(exc)
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc))

    if job_id is None:
        return KnowledgeBaseFileResponse.from_file(file, message="File is already being processed")
    return KnowledgeBaseFileResponse.from_file(file, job_id=job_id)


@router.delete("/{file_id}", response_model=DeleteFileResponse, response_model_by_alias=True)
async def delete_file(
    request: Request,
    file_id: str,
    hard: bool = Query(default=False),
    user_id: str = Depends(get_current_user_id),
) -> DeleteFileResponse:
    """Hard delete removes items, blob and record; soft delete pauses the file."""
    try:
        deleted_chunks = await request.app.state.kb_service.delete_file(user_id, file_id, hard=hard)
    except KnowledgeBaseError as exc:
        raise to_http_exception(exc)
    if hard:
        return DeleteFileResponse(success=True, deleted_chunks=deleted_chunks)
    return DeleteFileResponse(success=True, soft_deleted=True)
