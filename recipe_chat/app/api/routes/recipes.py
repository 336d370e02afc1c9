import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
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
from recipe_chat.app.schemas.chat import ChatResponse, RateLimitInfo, SearchRequest, StoreRecipeRequest
from recipe_chat.app.schemas.intent import IncomingMessage, IntentType
from recipe_chat.app.schemas.recipe import RecipeDraft, RecipeRead, RecipeUpdate, SearchResult
from recipe_chat.app.services import recipe_store
from recipe_chat.app.services.embedding import embed_recipe
from recipe_chat.app.services.errors import FailureKind, UpstreamUnavailable, user_message
from recipe_chat.app.services.handlers import HandlerContext
from recipe_chat.app.services.rate_limiter import RateLimitDecision

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recipes", tags=["recipes"])


@router.post("/store", response_model=ChatResponse)
async def store_recipe(
    payload: StoreRecipeRequest,
    request: Request,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
    limit: RateLimitDecision = Depends(rate_limited("recipe_store")),
):
    group_id = str(payload.group_id) if payload.group_id else None
    ctx = HandlerContext(
        db,
        current_user,
        group_id=group_id,
        cookbook_name=payload.cookbook_name,
        cookbook_page=payload.cookbook_page,
    )
    message = IncomingMessage(text=payload.message, group_id=payload.group_id)
    result = await run_until_disconnected(request, container.store_handler.handle(message, ctx))
    return ChatResponse(
        success=result.success,
        message=result.message,
        intent=IntentType.STORE_RECIPE.value,
        needs_clarification=result.needs_clarification,
        needs_review=result.needs_review,
        pending_recipe=result.pending_recipe,
        rate_limit=RateLimitInfo(limit=limit.limit, remaining=limit.remaining, reset=limit.reset),
    )


@router.post("/search", response_model=List[SearchResult])
async def search_recipes(
    payload: SearchRequest,
    group_id: Optional[UUID] = None,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
    limit: RateLimitDecision = Depends(rate_limited("chat")),
):
    ctx = HandlerContext(db, current_user, group_id=str(group_id) if group_id else None)
    return await container.search_handler.search(payload.query, ctx, limit=payload.limit)


@router.get("", response_model=List[RecipeRead])
def list_recipes(
    group_id: Optional[UUID] = None,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    return recipe_store.list_recipes(db, current_user, str(group_id) if group_id else None)


@router.get("/{recipe_id}", response_model=RecipeRead)
def get_recipe(
    recipe_id: str,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    return recipe_store.get_recipe(db, current_user, recipe_id)


@router.put("/{recipe_id}", response_model=RecipeRead)
async def update_recipe(
    recipe_id: str,
    payload: RecipeUpdate,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    existing = recipe_store.get_recipe(db, current_user, recipe_id)
    embedding = None
    if payload.touches_search_text():
        merged = RecipeDraft.model_validate(
            {
                "title": payload.title if payload.title is not None else existing.title,
                "ingredients": payload.ingredients if payload.ingredients is not None else existing.ingredients,
                "steps": payload.steps if payload.steps is not None else existing.steps,
                "tags": payload.tags if payload.tags is not None else existing.tags,
            }
        )
        try:
            embedding = await embed_recipe(container.embedder, merged)
        except UpstreamUnavailable as exc:
            logger.warning("Re-embedding recipe %s failed: %s", recipe_id, exc)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=user_message(FailureKind.UPSTREAM_ERROR),
            )
    return recipe_store.update_recipe(db, current_user, recipe_id, payload, embedding)


@router.delete("/{recipe_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_recipe(
    recipe_id: str,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    recipe_store.delete_recipe(db, current_user, recipe_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
