"""Resolution of the effective RAG mode and tag filters for a chat turn."""

from shared.models.rag import EffectiveRagConfig, GlobalRagSettings, RagMode, RagOverrides


def parse_rag_mode(value: str | RagMode | None) -> RagMode | None:
    """Return the RagMode for a loose value, or None if it is not a valid mode."""
    if isinstance(value, RagMode):
        return value
    if not isinstance(value, str):
        return None
    try:
        return RagMode(value.strip().lower())
    except ValueError:
        return None


def normalize_tags(tags: list[str] | None) -> list[str] | None:
    """Trim tags and drop empty ones. Returns None when nothing is left."""
    if not tags:
        return None
    cleaned = [tag.strip() for tag in tags if isinstance(tag, str) and tag.strip()]
    return cleaned or None


def compute_effective_rag_config(
    request: RagOverrides | None = None,
    conversation: RagOverrides | None = None,
    character_mode: str | None = None,
    global_settings: GlobalRagSettings | None = None,
) -> EffectiveRagConfig:
    """Resolve mode and tag filters by precedence.

    Mode: request > conversation > character > heavy, invalid values skipped.
    Tags: first non-empty normalized list among request, conversation, global.
    Retrieval is disabled when the global switch is off or the conversation
    turned it off.

    Args:
        request (RagOverrides | None): Overrides sent with the chat request.
        conversation (RagOverrides | None): Overrides stored on the conversation.
        character_mode (str | None): The character's default RAG mode.
        global_settings (GlobalRagSettings | None): Process-wide defaults.

    Returns:
        EffectiveRagConfig: The resolved settings.
    """
    candidates = [
        request.rag_mode if request else None,
        conversation.rag_mode if conversation else None,
        character_mode,
    ]
    rag_mode = RagMode.HEAVY
    for candidate in candidates:
        parsed = parse_rag_mode(candidate)
        if parsed is not None:
            rag_mode = parsed
            break

    tag_filters = (
        normalize_tags(request.tag_filters if request else None)
        or normalize_tags(conversation.tag_filters if conversation else None)
        or normalize_tags(global_settings.tag_filters if global_settings else None)
    )

    enabled = (global_settings.enabled if global_settings else True) and not (
        conversation is not None and conversation.enabled is False
    )
    return EffectiveRagConfig(rag_mode=rag_mode, tag_filters=tag_filters, enabled=enabled)
