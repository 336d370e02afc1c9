import enum
import math
from typing import List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from recipe_chat.app.schemas.chat import ConversationTurn


class IntentType(str, enum.Enum):
    STORE_RECIPE = "store_recipe"
    SEARCH_RECIPE = "search_recipe"
    GENERATE_RECIPE = "generate_recipe"
    GENERAL_CHAT = "general_chat"


class IncomingMessage(BaseModel):
    text: str
    history: Tuple[ConversationTurn, ...] = ()
    group_id: Optional[UUID] = None

    model_config = ConfigDict(frozen=True)

    def recent_history(self, turns: int) -> Tuple[ConversationTurn, ...]:
        if turns <= 0:
            return ()
        return self.history[-turns:]


class ClassificationResult(BaseModel):
    intent: IntentType
    confidence: float
    rationale: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value) -> float:
        value = float(value)
        if not math.isfinite(value):
            raise ValueError("confidence must be a finite number")
        return max(0.0, min(1.0, value))


class ClarificationRequest(BaseModel):
    prompt: str
    ambiguous_terms: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class DecisionKind(str, enum.Enum):
    DISPATCH = "dispatch"
    CLARIFY = "clarify"


class RoutingDecision(BaseModel):
    kind: DecisionKind
    intent: Optional[IntentType] = None
    confidence: Optional[float] = None
    handler: Optional[IntentType] = None
    clarification: Optional[ClarificationRequest] = None
    message: Optional[IncomingMessage] = None

    model_config = ConfigDict(frozen=True)

    @property
    def needs_clarification(self) -> bool:
        return self.kind == DecisionKind.CLARIFY
