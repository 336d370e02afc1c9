"""Pydantic models for fetching and reading untrusted URLs."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from recipe_chat.app.services.errors import FailureKind


class FetchTarget(BaseModel):
    """A parsed URL that is about to be requested."""

    url: str
    scheme: str
    host: str
    port: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class GuardVerdict(BaseModel):
    """Outcome of a URL safety check. Denials are values, not exceptions."""

    allowed: bool
    reason: Optional[str] = None
    target: Optional[FetchTarget] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def deny(cls, reason: str, target: Optional[FetchTarget] = None) -> "GuardVerdict":
        return cls(allowed=False, reason=reason, target=target)


class FetchResult(BaseModel):
    """Result of fetching a page."""

    ok: bool
    url: str
    final_url: Optional[str] = None
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    text: Optional[str] = None
    redirects: List[str] = Field(default_factory=list)
    failure: Optional[FailureKind] = None
    error_message: Optional[str] = None


class ParsedRecipe(BaseModel):
    """A recipe read from structured page data."""

    title: str
    description: Optional[str] = None
    source_url: Optional[str] = None
    image_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    ingredients: List[str] = Field(default_factory=list)
    steps: List[str] = Field(default_factory=list)

    def as_labelled_text(self) -> str:
        lines = [f"Title: {self.title}"]
        if self.description:
            lines.append(f"Description: {self.description}")
        lines.append("Ingredients:")
        lines.extend(f"- {item}" for item in self.ingredients)
        lines.append("Steps:")
        lines.extend(f"{idx}. {step}" for idx, step in enumerate(self.steps, start=1))
        if self.tags:
            lines.append(f"Tags: {', '.join(self.tags)}")
        return "\n".join(lines)
