"""Recipe persistence with group-scoped authorization.

Every query filters by the groups a user owns or is an active member of. A
recipe outside those groups is reported exactly like a missing one.
"""

import logging
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.orm import Session

from recipe_chat.app.db import models
from recipe_chat.app.schemas.auth import CurrentUser
from recipe_chat.app.schemas.recipe import RecipeCreate, RecipeRead, RecipeUpdate
from recipe_chat.app.services.search_ranker import SearchCandidate

logger = logging.getLogger(__name__)

WRITE_ROLES = {models.MemberRole.WRITE}


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipe not found")


def ensure_default_group(db: Session, user: CurrentUser) -> models.RecipeGroup:
    stmt = (
        select(models.RecipeGroup)
        .where(models.RecipeGroup.owner_id == user.id)
        .order_by(models.RecipeGroup.created_at.asc())
    )
    group = db.scalars(stmt).first()
    if group is None:
        name = f"{user.name}'s Recipes" if user.name else "My Recipes"
        group = models.RecipeGroup(name=name, owner_id=user.id)
        db.add(group)
        db.flush()
        logger.info("Created default recipe group %s for user %s", group.id, user.id)
    return group


def readable_group_ids(db: Session, user_id: str) -> List[str]:
    owned = select(models.RecipeGroup.id).where(models.RecipeGroup.owner_id == user_id)
    member = select(models.GroupMember.group_id).where(
        models.GroupMember.user_id == user_id,
        models.GroupMember.status == models.MemberStatus.ACTIVE,
    )
    ids = set(db.scalars(owned).all()) | set(db.scalars(member).all())
    return sorted(ids)


def can_write(db: Session, user_id: str, group: models.RecipeGroup) -> bool:
    if group.owner_id == user_id:
        return True
    stmt = select(models.GroupMember).where(
        models.GroupMember.group_id == group.id,
        models.GroupMember.user_id == user_id,
        models.GroupMember.status == models.MemberStatus.ACTIVE,
    )
    membership = db.scalars(stmt).first()
    return membership is not None and membership.role in WRITE_ROLES


def resolve_group(
    db: Session, user: CurrentUser, group_id: Optional[str], *, for_write: bool = False
) -> Optional[models.RecipeGroup]:
    """The requested group if the user may use it, the default group if none was given."""
    if group_id is None:
        return ensure_default_group(db, user)
    group = db.get(models.RecipeGroup, str(group_id))
    if group is None or group.id not in readable_group_ids(db, user.id):
        return None
    if for_write and not can_write(db, user.id, group):
        return None
    return group


def _scoped(db: Session, user_id: str, group_id: Optional[str] = None):
    group_ids = readable_group_ids(db, user_id)
    if group_id is not None:
        group_ids = [g for g in group_ids if g == str(group_id)]
    return select(models.Recipe).where(models.Recipe.group_id.in_(group_ids))


def create_recipe(
    db: Session, user: CurrentUser, group: models.RecipeGroup, data: RecipeCreate, embedding: List[float]
) -> models.Recipe:
    if not embedding:
        raise ValueError("A recipe cannot be stored without its embedding")
    recipe = models.Recipe(
        user_id=user.id,
        group_id=group.id,
        title=data.title,
        ingredients=list(data.ingredients),
        steps=list(data.steps),
        tags=list(data.tags),
        source_type=data.source_type,
        source_url=data.source_url,
        image_url=data.image_url,
        video_url=data.video_url,
        video_platform=data.video_platform,
        cookbook_name=data.cookbook_name,
        cookbook_page=data.cookbook_page,
        contributor_name=data.contributor_name or user.name,
        embedding=list(embedding),
    )
    db.add(recipe)
    db.commit()
    db.refresh(recipe)
    return recipe


def list_recipes(db: Session, user: CurrentUser, group_id: Optional[str] = None) -> List[models.Recipe]:
    stmt = _scoped(db, user.id, group_id).order_by(models.Recipe.created_at.desc())
    return list(db.scalars(stmt).all())


def get_recipe(db: Session, user: CurrentUser, recipe_id: str) -> models.Recipe:
    stmt = _scoped(db, user.id).where(models.Recipe.id == str(recipe_id))
    recipe = db.scalars(stmt).first()
    if not recipe:
        raise _not_found()
    return recipe


def _writable_recipe(db: Session, user: CurrentUser, recipe_id: str) -> models.Recipe:
    recipe = get_recipe(db, user, recipe_id)
    if recipe.user_id != user.id and not can_write(db, user.id, recipe.group):
        raise _not_found()
    return recipe


def update_recipe(
    db: Session,
    user: CurrentUser,
    recipe_id: str,
    data: RecipeUpdate,
    embedding: Optional[List[float]] = None,
) -> models.Recipe:
    """Apply an edit. Edits touching the search text must come with a fresh embedding."""
    recipe = _writable_recipe(db, user, recipe_id)
    if data.touches_search_text() and not embedding:
        raise ValueError("Edits to title, ingredients, steps or tags require a new embedding")

    for field in ("title", "source_url", "image_url", "cookbook_name", "cookbook_page"):
        value = getattr(data, field)
        if value is not None:
            setattr(recipe, field, value)
    if data.ingredients is not None:
        recipe.ingredients = list(data.ingredients)
    if data.steps is not None:
        recipe.steps = list(data.steps)
    if data.tags is not None:
        recipe.tags = list(data.tags)
    if embedding:
        recipe.embedding = list(embedding)

    db.commit()
    db.refresh(recipe)
    return recipe


def delete_recipe(db: Session, user: CurrentUser, recipe_id: str) -> None:
    recipe = _writable_recipe(db, user, recipe_id)
    db.delete(recipe)
    db.commit()


def list_search_candidates(
    db: Session, user: CurrentUser, group_id: Optional[str] = None
) -> List[SearchCandidate]:
    candidates = []
    for recipe in list_recipes(db, user, group_id):
        if not recipe.embedding:
            continue
        candidates.append(
            SearchCandidate(recipe=RecipeRead.model_validate(recipe), embedding=list(recipe.embedding))
        )
    return candidates


def keyword_search(
    db: Session, user: CurrentUser, keywords: List[str], group_id: Optional[str] = None, limit: int = 10
) -> List[models.Recipe]:
    terms = [k.strip().lower() for k in keywords if k.strip()]
    if not terms:
        return []
    clauses = []
    for term in terms:
        pattern = f"%{term}%"
        clauses.append(func.lower(models.Recipe.title).like(pattern))
        clauses.append(func.lower(cast(models.Recipe.tags, String)).like(f'%"{term}"%'))
    stmt = (
        _scoped(db, user.id, group_id)
        .where(or_(*clauses))
        .order_by(models.Recipe.created_at.desc())
        .limit(limit)
    )
    return list(db.scalars(stmt).all())
