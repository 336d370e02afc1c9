import logging
import math
from typing import Protocol, Sequence

from recipe_chat.app.core.config import Settings
from recipe_chat.app.schemas.chat import ConversationTurn
from recipe_chat.app.schemas.intent import ClassificationResult, IntentType
from recipe_chat.app.services.errors import ClassificationUnavailable, UpstreamUnavailable
from recipe_chat.app.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an intent classifier for a recipe book assistant.

Classify the user's latest message into ONE of these intents:

1. "store_recipe" - the user wants to ADD or SAVE a recipe
   - "Here's my grandma's lasagna recipe"
   - "Save this recipe: [recipe text or link]"
   - "Add this to my collection"

2. "search_recipe" - the user wants to FIND a recipe in their collection
   - "Show me pasta recipes"
   - "Do I have any vegetarian meals?"
   - "Recipe for chocolate cake"

3. "generate_recipe" - the user asks for a NEW recipe to be created
   - "Create a vegan curry recipe"
   - "Invent something with leftover rice"

4. "general_chat" - cooking questions, advice or small talk
   - "How do I cook rice?"
   - "Hello"
   - "Thanks!"

Rules:
- Return ONLY JSON: {"intent": "<intent>", "confidence": <0-1>, "rationale": "<short reason>"}
- Use earlier turns only to disambiguate short follow-ups.
- Words like "save", "add", "here's a recipe" or a pasted recipe/link mean store_recipe.
- Words like "find", "show", "search", "do I have" mean search_recipe.
- Lower the confidence when the message could reasonably mean two intents."""

VALID_INTENTS = {intent.value for intent in IntentType}


class IntentClassifier(Protocol):
    async def classify(
        self, text: str, history: Sequence[ConversationTurn] = ()
    ) -> ClassificationResult:
        ...


class ConstantClassifier:
    """Always answers the same intent. Useful when no model is available."""

    def __init__(self, intent: IntentType = IntentType.GENERAL_CHAT, confidence: float = 1.0):
        self.result = ClassificationResult(intent=intent, confidence=confidence)

    async def classify(
        self, text: str, history: Sequence[ConversationTurn] = ()
    ) -> ClassificationResult:
        return self.result


class LLMIntentClassifier:
    """Classifies a message with one JSON-mode chat completion.

    Any failure to get a well-formed answer raises ``ClassificationUnavailable``;
    nothing here guesses an intent on the caller's behalf.
    """

    def __init__(self, llm: LLMClient, settings: Settings):
        self.llm = llm
        self.settings = settings

    def _messages(self, text: str, history: Sequence[ConversationTurn]):
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        turns = list(history)[-self.settings.classifier_history_turns :] if self.settings.classifier_history_turns > 0 else []
        for turn in turns:
            messages.append({"role": turn.role, "content": turn.text})
        messages.append({"role": "user", "content": text})
        return messages

    async def classify(
        self, text: str, history: Sequence[ConversationTurn] = ()
    ) -> ClassificationResult:
        if not self.llm.configured:
            raise ClassificationUnavailable("LLM is not configured")
        try:
            data = await self.llm.chat_json(
                self._messages(text, history),
                schema_hint='{"intent": string, "confidence": number, "rationale": string}',
                temperature=0.3,
                max_tokens=150,
            )
        except UpstreamUnavailable as exc:
            logger.warning("Intent classification failed: %s", exc)
            raise ClassificationUnavailable(str(exc)) from exc

        intent = data.get("intent")
        confidence = data.get("confidence")
        if intent not in VALID_INTENTS:
            logger.warning("Classifier returned unknown intent: %r", intent)
            raise ClassificationUnavailable("unknown intent")
        if (
            isinstance(confidence, bool)
            or not isinstance(confidence, (int, float))
            or not math.isfinite(confidence)
        ):
            logger.warning("Classifier returned invalid confidence: %r", confidence)
            raise ClassificationUnavailable("invalid confidence")

        rationale = data.get("rationale")
        result = ClassificationResult(
            intent=IntentType(intent),
            confidence=confidence,
            rationale=rationale if isinstance(rationale, str) else None,
        )
        logger.info("Intent classified: %s (%.2f)", result.intent.value, result.confidence)
        return result
