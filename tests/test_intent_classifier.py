import json

import httpx
import pytest
from pydantic import ValidationError

from recipe_chat.app.core.config import Settings
from recipe_chat.app.schemas.chat import ConversationTurn
from recipe_chat.app.schemas.intent import ClassificationResult, IntentType
from recipe_chat.app.services.errors import ClassificationUnavailable
from recipe_chat.app.services.intent_classifier import ConstantClassifier, LLMIntentClassifier
from recipe_chat.app.services.llm_client import LLMClient

from conftest import RecordingTransport


def classifier_for(content, settings=None):
    settings = settings or Settings(LLM_BASE_URL="https://llm.example", CLASSIFIER_HISTORY_TURNS=2, _env_file=None)
    transport = RecordingTransport(
        lambda request: httpx.Response(200, json={"choices": [{"message": {"content": content}}]})
    )
    http = httpx.AsyncClient(transport=transport)
    return LLMIntentClassifier(LLMClient(settings, http), settings), transport


@pytest.mark.asyncio
async def test_classifies_intent_and_confidence():
    classifier, _ = classifier_for('{"intent": "search_recipe", "confidence": 0.92, "rationale": "asks to find"}')
    result = await classifier.classify("find my lasagna")
    assert result.intent == IntentType.SEARCH_RECIPE
    assert result.confidence == pytest.approx(0.92)
    assert result.rationale == "asks to find"


@pytest.mark.asyncio
async def test_confidence_is_clamped():
    classifier, _ = classifier_for('{"intent": "general_chat", "confidence": 1.7}')
    result = await classifier.classify("hello")
    assert result.confidence == 1.0


@pytest.mark.asyncio
async def test_only_recent_history_is_sent():
    classifier, transport = classifier_for('{"intent": "store_recipe", "confidence": 0.9}')
    history = [
        ConversationTurn(role="user", text="first"),
        ConversationTurn(role="assistant", text="second"),
        ConversationTurn(role="user", text="third"),
    ]
    await classifier.classify("yes, that one", history)
    sent = json.loads(transport.requests[0].content)["messages"]
    assert [m["content"] for m in sent[1:]] == ["second", "third", "yes, that one"]
    assert sent[0]["role"] == "system"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    [
        '{"intent": "order_pizza", "confidence": 0.99}',
        '{"intent": "search_recipe", "confidence": "very"}',
        '{"intent": "search_recipe"}',
        '{"intent": "store_recipe", "confidence": NaN}',
        '{"intent": "store_recipe", "confidence": Infinity}',
        "I think they want to search",
    ],
)
async def test_unusable_answers_raise(content):
    classifier, _ = classifier_for(content)
    with pytest.raises(ClassificationUnavailable):
        await classifier.classify("find pasta")


@pytest.mark.asyncio
async def test_unconfigured_llm_raises():
    classifier, transport = classifier_for("{}", Settings(LLM_BASE_URL=None, _env_file=None))
    with pytest.raises(ClassificationUnavailable):
        await classifier.classify("find pasta")
    assert transport.requests == []


@pytest.mark.asyncio
async def test_constant_classifier_clamps_and_ignores_input():
    classifier = ConstantClassifier(IntentType.SEARCH_RECIPE, confidence=1.5)
    result = await classifier.classify("anything at all")
    assert result.intent == IntentType.SEARCH_RECIPE
    assert result.confidence == 1.0


@pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
def test_result_rejects_non_finite_confidence(value):
    with pytest.raises(ValidationError):
        ClassificationResult(intent=IntentType.STORE_RECIPE, confidence=value)
