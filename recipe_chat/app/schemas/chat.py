from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from recipe_chat.app.core.config import get_settings
from recipe_chat.app.schemas.recipe import RecipeCreate, RecipeDraft, RecipeRead

# Request bounds are fixed when the app starts
CHAT_MESSAGE_MAX_CHARS = get_settings().chat_message_max_chars
STORE_MESSAGE_MAX_CHARS = get_settings().store_message_max_chars
HISTORY_MAX_TURNS = 50


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    text: str = Field(max_length=CHAT_MESSAGE_MAX_CHARS)

    model_config = ConfigDict(frozen=True)


class ChatRequest(BaseModel):
    message: str = Field("", max_length=CHAT_MESSAGE_MAX_CHARS)
    conversation_history: List[ConversationTurn] = Field(default_factory=list, max_length=HISTORY_MAX_TURNS)
    confirm_recipe: Optional[RecipeCreate] = None
    group_id: Optional[UUID] = None

    @model_validator(mode="after")
    def require_message_or_confirmation(self) -> "ChatRequest":
        if self.confirm_recipe is None and not self.message.strip():
            raise ValueError("Message is required")
        return self


class StoreRecipeRequest(BaseModel):
    message: str = Field(min_length=1, max_length=STORE_MESSAGE_MAX_CHARS)
    group_id: Optional[UUID] = None
    cookbook_name: Optional[str] = Field(None, max_length=200)
    cookbook_page: Optional[str] = Field(None, max_length=50)


class SearchRequest(BaseModel):
    query: str = Field(min_length=1, max_length=CHAT_MESSAGE_MAX_CHARS)
    limit: Optional[int] = Field(None, ge=1, le=50)


class RateLimitInfo(BaseModel):
    limit: int
    remaining: int
    reset: int


class ChatResponse(BaseModel):
    success: bool
    message: str
    intent: Optional[str] = None
    confidence: Optional[float] = None
    needs_clarification: bool = False
    needs_review: bool = False
    recipe: Optional[RecipeRead] = None
    pending_recipe: Optional[RecipeDraft] = None
    recipes: List[RecipeRead] = Field(default_factory=list)
    rate_limit: Optional[RateLimitInfo] = None


class ChatHistoryItem(BaseModel):
    id: int
    role: str
    message: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
