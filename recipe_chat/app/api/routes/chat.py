import logging
from typing import List

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from recipe_chat.app.api.deps import (
    get_container,
    get_current_user,
    get_db_session,
    rate_limited,
    run_until_disconnected,
)
from recipe_chat.app.core.container import ServiceContainer
from recipe_chat.app.schemas.auth import CurrentUser
from recipe_chat.app.schemas.chat import ChatHistoryItem, ChatRequest, ChatResponse, RateLimitInfo
from recipe_chat.app.schemas.intent import IncomingMessage, IntentType
from recipe_chat.app.services import chat_history_service
from recipe_chat.app.services.handlers import HandlerContext, commit_recipe
from recipe_chat.app.services.rate_limiter import RateLimitDecision

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("", response_model=ChatResponse)
async def chat(
    payload: ChatRequest,
    request: Request,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
    limit: RateLimitDecision = Depends(rate_limited("chat")),
):
    group_id = str(payload.group_id) if payload.group_id else None
    ctx = HandlerContext(db, current_user, group_id=group_id)
    intent = None
    confidence = None

    if payload.confirm_recipe is not None:
        user_text = payload.message.strip() or f"Save recipe: {payload.confirm_recipe.title}"
        result = await run_until_disconnected(
            request, commit_recipe(payload.confirm_recipe, ctx, container.embedder)
        )
        intent = IntentType.STORE_RECIPE.value
    else:
        user_text = payload.message.strip()
        history = list(payload.conversation_history)
        if not history:
            stored = chat_history_service.load_recent(db, current_user.id)
            history = chat_history_service.conversation_context(
                stored, container.settings.chat_history_context_length
            )
        message = IncomingMessage(text=user_text, history=tuple(history), group_id=payload.group_id)
        outcome = await run_until_disconnected(request, container.router.route(message, ctx))
        result = outcome.response
        if outcome.decision.intent is not None:
            intent = outcome.decision.intent.value
        confidence = outcome.decision.confidence

    chat_history_service.append_message(db, current_user.id, "user", user_text)
    chat_history_service.append_message(db, current_user.id, "assistant", result.message)

    return ChatResponse(
        success=result.success,
        message=result.message,
        intent=intent,
        confidence=confidence,
        needs_clarification=result.needs_clarification,
        needs_review=result.needs_review,
        recipe=result.recipe,
        pending_recipe=result.pending_recipe,
        recipes=result.recipes,
        rate_limit=RateLimitInfo(limit=limit.limit, remaining=limit.remaining, reset=limit.reset),
    )


@router.get("/history", response_model=List[ChatHistoryItem])
def get_history(
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    return chat_history_service.load_recent(db, current_user.id)


@router.delete("/history", status_code=status.HTTP_204_NO_CONTENT)
def clear_history(
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    removed = chat_history_service.clear_history(db, current_user.id)
    logger.info("Cleared %s chat messages for user %s", removed, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
