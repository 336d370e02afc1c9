from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from recipe_chat.app.db.models import SourceType


def normalize_tags(tags: List[str]) -> List[str]:
    """Lowercase, strip and de-duplicate tags, keeping first-seen order."""
    seen: List[str] = []
    for tag in tags or []:
        cleaned = str(tag).strip().lower()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


def _clean_lines(values: List[str]) -> List[str]:
    return [str(v).strip() for v in values or [] if str(v).strip()]


class RecipeBase(BaseModel):
    title: str = ""
    ingredients: List[str] = Field(default_factory=list)
    steps: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    source_type: SourceType = SourceType.MANUAL
    source_url: Optional[str] = None
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    video_platform: Optional[str] = None
    cookbook_name: Optional[str] = None
    cookbook_page: Optional[str] = None
    contributor_name: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, value) -> str:
        return str(value or "").strip()

    @field_validator("ingredients", "steps", mode="before")
    @classmethod
    def strip_lines(cls, value) -> List[str]:
        return _clean_lines(value)

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, value) -> List[str]:
        return normalize_tags(value or [])


class RecipeDraft(RecipeBase):
    """A parsed recipe that has not been confirmed yet. May be incomplete."""

    def missing_fields(self) -> List[str]:
        missing = []
        if not self.title:
            missing.append("title")
        if not self.ingredients:
            missing.append("ingredients")
        if not self.steps:
            missing.append("steps")
        return missing

    def is_complete(self) -> bool:
        return not self.missing_fields()


class RecipeCreate(RecipeBase):
    group_id: Optional[str] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: str) -> str:
        if not value:
            raise ValueError("Title is required")
        return value

    @field_validator("ingredients")
    @classmethod
    def validate_ingredients(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("At least one ingredient is required")
        return value

    @field_validator("steps")
    @classmethod
    def validate_steps(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("At least one step is required")
        return value


class RecipeUpdate(BaseModel):
    title: Optional[str] = None
    ingredients: Optional[List[str]] = None
    steps: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    source_url: Optional[str] = None
    image_url: Optional[str] = None
    cookbook_name: Optional[str] = None
    cookbook_page: Optional[str] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("Title cannot be blank")
        return value.strip() if value is not None else None

    @field_validator("ingredients", "steps")
    @classmethod
    def validate_non_empty(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is not None and not _clean_lines(value):
            raise ValueError("must not be empty")
        return _clean_lines(value) if value is not None else None

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return normalize_tags(value) if value is not None else None

    def touches_search_text(self) -> bool:
        return any(v is not None for v in (self.title, self.ingredients, self.steps, self.tags))


class RecipeRead(RecipeBase):
    id: str
    user_id: str
    group_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SearchResult(BaseModel):
    recipe: RecipeRead
    similarity: float
