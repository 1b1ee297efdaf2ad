"""
Version 1 router aggregation.
Each feature area has its own router so every route is an independent handler.
"""
from fastapi import APIRouter

from app.api.v1.assistants import admin_router as admin_assistants_router
from app.api.v1.assistants import router as assistants_router
from app.api.v1.auth import router as auth_router
from app.api.v1.chat import router as chat_router
from app.api.v1.files import router as files_router
from app.api.v1.institutions import router as institutions_router
from app.api.v1.subscriptions import router as subscriptions_router

api_router = APIRouter()

api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(assistants_router, prefix="/assistants", tags=["assistants"])
api_router.include_router(admin_assistants_router, prefix="/admin", tags=["admin"])
api_router.include_router(subscriptions_router, prefix="/subscriptions", tags=["subscriptions"])
api_router.include_router(chat_router, prefix="/chat", tags=["chat"])
api_router.include_router(files_router, prefix="/chat/files", tags=["files"])
api_router.include_router(institutions_router, prefix="/institutions", tags=["institutions"])
