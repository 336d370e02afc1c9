"""Confidence-gated routing of one incoming message to one handler.

States for a single message: received -> classified -> (dispatched | clarifying)
-> responded. The router keeps no state between messages; each call records its
own transitions on the returned outcome.
"""

import enum
import logging
import re
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from recipe_chat.app.core.config import Settings
from recipe_chat.app.schemas.intent import (
    ClarificationRequest,
    ClassificationResult,
    DecisionKind,
    IncomingMessage,
    IntentType,
    RoutingDecision,
)
from recipe_chat.app.services.errors import ClassificationUnavailable
from recipe_chat.app.services.handlers import Handler, HandlerContext, HandlerResponse
from recipe_chat.app.services.intent_classifier import IntentClassifier

logger = logging.getLogger(__name__)

ACTION_VERBS: Dict[str, IntentType] = {
    "find": IntentType.SEARCH_RECIPE,
    "show": IntentType.SEARCH_RECIPE,
    "search": IntentType.SEARCH_RECIPE,
    "look": IntentType.SEARCH_RECIPE,
    "list": IntentType.SEARCH_RECIPE,
    "make": IntentType.GENERATE_RECIPE,
    "create": IntentType.GENERATE_RECIPE,
    "generate": IntentType.GENERATE_RECIPE,
    "invent": IntentType.GENERATE_RECIPE,
    "cook": IntentType.GENERATE_RECIPE,
    "save": IntentType.STORE_RECIPE,
    "add": IntentType.STORE_RECIPE,
    "store": IntentType.STORE_RECIPE,
    "keep": IntentType.STORE_RECIPE,
}
FILLER_WORDS = {"me", "a", "an", "and", "or", "the", "some", "my", "this", "that", "up", "for", "of", "to", "please"}
MAX_OBJECT_WORDS = 8

OPTION_PHRASES: Dict[IntentType, str] = {
    IntentType.SEARCH_RECIPE: 'find "{obj}" in your saved recipes',
    IntentType.STORE_RECIPE: 'save "{obj}" as a new recipe',
    IntentType.GENERAL_CHAT: 'get cooking advice about "{obj}"',
}


class RouterState(str, enum.Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    DISPATCHED = "dispatched"
    CLARIFYING = "clarifying"
    RESPONDED = "responded"


class RoutingPolicy:
    """Confidence gate plus explicit intent-to-handler redirects."""

    def __init__(self, confidence_threshold: float = 0.8, intent_redirects: Optional[Mapping] = None):
        self.confidence_threshold = confidence_threshold
        if intent_redirects is None:
            intent_redirects = {IntentType.GENERATE_RECIPE: IntentType.SEARCH_RECIPE}
        self.intent_redirects = {IntentType(k): IntentType(v) for k, v in intent_redirects.items()}

    @classmethod
    def from_settings(cls, settings: Settings) -> "RoutingPolicy":
        return cls(settings.confidence_threshold, settings.intent_redirects)

    def is_confident(self, classification: ClassificationResult) -> bool:
        return classification.confidence >= self.confidence_threshold

    def resolve_handler(self, intent: IntentType) -> IntentType:
        return self.intent_redirects.get(intent, intent)


class RouteOutcome(BaseModel):
    decision: RoutingDecision
    response: HandlerResponse
    states: List[RouterState] = Field(default_factory=list)


def _tokens(text: str) -> List[str]:
    first_line = next((line for line in text.splitlines() if line.strip()), "")
    return re.findall(r"[A-Za-z0-9'-]+", first_line)


def build_clarification(
    message: IncomingMessage,
    classification: Optional[ClassificationResult],
    policy: Optional[RoutingPolicy] = None,
) -> ClarificationRequest:
    """Ask which of the plausible actions was meant, quoting the user's own words."""
    policy = policy or RoutingPolicy()
    tokens = _tokens(message.text)
    lowered = [t.lower() for t in tokens]

    terms: List[str] = []
    last_verb_at = None
    for idx, word in enumerate(lowered):
        if word in ACTION_VERBS:
            last_verb_at = idx
            if word not in terms:
                terms.append(word)

    rest = tokens[last_verb_at + 1 :] if last_verb_at is not None else tokens
    while rest and rest[0].lower() in FILLER_WORDS:
        rest = rest[1:]
    obj = " ".join(rest[:MAX_OBJECT_WORDS]) or "that"

    candidates: List[IntentType] = []
    if classification is not None:
        candidates.append(policy.resolve_handler(classification.intent))
    candidates.extend(policy.resolve_handler(ACTION_VERBS[t]) for t in terms)
    candidates.extend([IntentType.SEARCH_RECIPE, IntentType.STORE_RECIPE])
    options: List[IntentType] = []
    for intent in candidates:
        if intent in OPTION_PHRASES and intent not in options:
            options.append(intent)
    phrases = [OPTION_PHRASES[i].format(obj=obj) for i in options[:2]]

    if terms:
        said = " and ".join(f'"{t}"' for t in terms)
        prompt = f"I want to make sure I get this right. When you say {said}, do you want to "
    else:
        prompt = "I'm not sure what you'd like to do. Do you want to "
    prompt += " or ".join(phrases) + "?"
    prompt += ' Starting your message with "find" or "save" helps me act on it right away.'
    return ClarificationRequest(prompt=prompt, ambiguous_terms=terms + ([obj] if obj != "that" else []))


class MessageRouter:
    def __init__(
        self,
        classifier: IntentClassifier,
        handlers: Mapping[IntentType, Handler],
        policy: RoutingPolicy,
    ):
        self.classifier = classifier
        self.handlers = dict(handlers)
        self.policy = policy

    async def decide(self, message: IncomingMessage, states: Optional[List[RouterState]] = None) -> RoutingDecision:
        states = states if states is not None else []
        states.append(RouterState.RECEIVED)
        try:
            classification = await self.classifier.classify(message.text, message.history)
        except ClassificationUnavailable as exc:
            logger.info("Classification unavailable, asking for clarification: %s", exc)
            states.append(RouterState.CLARIFYING)
            return RoutingDecision(
                kind=DecisionKind.CLARIFY,
                clarification=build_clarification(message, None, self.policy),
            )

        states.append(RouterState.CLASSIFIED)
        if not self.policy.is_confident(classification):
            logger.info(
                "Low confidence %.2f for %s, asking for clarification",
                classification.confidence,
                classification.intent.value,
            )
            states.append(RouterState.CLARIFYING)
            return RoutingDecision(
                kind=DecisionKind.CLARIFY,
                intent=classification.intent,
                confidence=classification.confidence,
                clarification=build_clarification(message, classification, self.policy),
            )

        handler = self.policy.resolve_handler(classification.intent)
        if handler != classification.intent:
            logger.info("Redirecting %s to %s handler", classification.intent.value, handler.value)
        states.append(RouterState.DISPATCHED)
        return RoutingDecision(
            kind=DecisionKind.DISPATCH,
            intent=classification.intent,
            confidence=classification.confidence,
            handler=handler,
            message=message,
        )

    async def route(self, message: IncomingMessage, ctx: HandlerContext) -> RouteOutcome:
        states: List[RouterState] = []
        decision = await self.decide(message, states)
        if decision.needs_clarification:
            response = HandlerResponse(
                message=decision.clarification.prompt,
                needs_clarification=True,
            )
        else:
            handler = self.handlers.get(decision.handler)
            if handler is None:
                raise LookupError(f"No handler registered for {decision.handler.value}")
            response = await handler.handle(decision.message, ctx)
        states.append(RouterState.RESPONDED)
        return RouteOutcome(decision=decision, response=response, states=states)
