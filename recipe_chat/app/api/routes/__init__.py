from fastapi import APIRouter

from recipe_chat.app.api.routes import chat, recipes

api_router = APIRouter()
api_router.include_router(chat.router)
api_router.include_router(recipes.router)
