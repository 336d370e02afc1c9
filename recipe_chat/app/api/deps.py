import asyncio
import logging
from typing import Awaitable, Callable, Iterator, Optional, TypeVar

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from recipe_chat.app.core.config import get_settings
from recipe_chat.app.core.container import ServiceContainer
from recipe_chat.app.schemas.auth import CurrentUser
from recipe_chat.app.services.errors import FailureKind, user_message
from recipe_chat.app.services.rate_limiter import RateLimitDecision, user_key

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

CLIENT_CLOSED_REQUEST = 499
DISCONNECT_POLL_SECONDS = 0.25

T = TypeVar("T")


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    settings = get_settings()
    try:
        payload = jwt.decode(credentials.credentials, settings.auth_secret_key, algorithms=[settings.auth_algorithm])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    sub = payload.get("sub")
    if sub is None or not str(sub).strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return CurrentUser(id=str(sub), email=payload.get("email"), name=payload.get("name"))


def get_db(container: ServiceContainer = Depends(get_container)) -> Iterator[Session]:
    db = container.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_db_session(db: Session = Depends(get_db)) -> Session:
    return db


def rate_limited(bucket: str) -> Callable[..., Awaitable[RateLimitDecision]]:
    """Dependency enforcing the per-user sliding window for ``bucket``.

    Runs before the endpoint body, so a rejected request never reaches a model,
    fetch or embedding call.
    """

    async def dependency(
        response: Response,
        current_user: CurrentUser = Depends(get_current_user),
        container: ServiceContainer = Depends(get_container),
    ) -> RateLimitDecision:
        settings = container.settings
        limit = settings.rate_limit_store_max if bucket == "recipe_store" else settings.rate_limit_chat_max
        decision = await container.limiter.hit(
            user_key(current_user.id, bucket),
            limit=limit,
            window_seconds=settings.rate_limit_window_seconds,
        )
        if not decision.allowed:
            logger.info("Rate limit hit for user %s on %s", current_user.id, bucket)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=user_message(FailureKind.RATE_LIMITED),
                headers=decision.headers(),
            )
        response.headers.update(decision.headers())
        return decision

    return dependency


async def run_until_disconnected(request: Request, work: Awaitable[T]) -> T:
    """Await ``work``; cancel it if the client goes away first."""
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling %s %s", request.method, request.url.path)
                task.cancel()
                raise HTTPException(status_code=CLIENT_CLOSED_REQUEST, detail="Client closed request")
    finally:
        if not task.done():
            task.cancel()
