import logging
from typing import Optional

import httpx
from sqlalchemy.orm import sessionmaker

from recipe_chat.app.core.config import Settings
from recipe_chat.app.db.base import Base
from recipe_chat.app.db.session import build_engine, build_session_factory
from recipe_chat.app.schemas.intent import IntentType
from recipe_chat.app.services.content_extractor import ContentExtractor
from recipe_chat.app.services.embedding import Embedder, EmbeddingGenerator
from recipe_chat.app.services.handlers import ChatResponder, SearchRecipeHandler, StoreRecipeHandler
from recipe_chat.app.services.intent_classifier import IntentClassifier, LLMIntentClassifier
from recipe_chat.app.services.llm_client import LLMClient
from recipe_chat.app.services.rate_limiter import (
    InMemorySlidingWindowLimiter,
    RedisSlidingWindowLimiter,
    SlidingWindowLimiter,
)
from recipe_chat.app.services.recipe_parser import RecipeParser
from recipe_chat.app.services.router import MessageRouter, RoutingPolicy
from recipe_chat.app.services.url_parsing.url_guard import Resolver
from recipe_chat.app.services.video.captions import CaptionsProvider, YtDlpCaptionsProvider

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Owns the long-lived collaborators for one application instance.

    Any collaborator can be passed in to replace the default built from settings.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        session_factory: Optional[sessionmaker] = None,
        classifier: Optional[IntentClassifier] = None,
        embedder: Optional[Embedder] = None,
        captions: Optional[CaptionsProvider] = None,
        limiter: Optional[SlidingWindowLimiter] = None,
        resolver: Optional[Resolver] = None,
    ):
        self.settings = settings
        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.fetch_timeout_seconds, connect=settings.fetch_connect_timeout_seconds),
            follow_redirects=False,
        )
        if session_factory is None:
            engine = build_engine(settings.database_url)
            Base.metadata.create_all(bind=engine)
            session_factory = build_session_factory(engine)
        self.session_factory = session_factory

        self.llm = LLMClient(settings, self.http)
        self.classifier = classifier or LLMIntentClassifier(self.llm, settings)
        self.embedder = embedder or EmbeddingGenerator(self.llm, settings.embedding_dimensions)
        self.captions = captions or YtDlpCaptionsProvider(settings, self.http, resolver)
        if limiter is None:
            if settings.redis_url:
                logger.info("Rate limiting using Redis")
                limiter = RedisSlidingWindowLimiter(settings.redis_url)
            else:
                logger.info("Rate limiting using in-memory storage (set REDIS_URL for Redis)")
                limiter = InMemorySlidingWindowLimiter()
        self.limiter = limiter

        self.extractor = ContentExtractor(settings, self.http, self.captions, resolver)
        self.parser = RecipeParser(self.llm)
        self.store_handler = StoreRecipeHandler(self.extractor, self.parser)
        self.search_handler = SearchRecipeHandler(self.embedder, settings)
        self.chat_responder = ChatResponder(self.llm, settings)
        self.router = MessageRouter(
            self.classifier,
            {
                IntentType.STORE_RECIPE: self.store_handler,
                IntentType.SEARCH_RECIPE: self.search_handler,
                IntentType.GENERAL_CHAT: self.chat_responder,
            },
            RoutingPolicy.from_settings(settings),
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()
        if isinstance(self.limiter, RedisSlidingWindowLimiter):
            await self.limiter.close()
