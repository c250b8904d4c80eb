from fastapi import APIRouter
from app.api.endpoints import ask, query

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(ask.router)
api_router.include_router(query.router)
