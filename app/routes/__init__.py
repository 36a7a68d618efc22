# app/routes/__init__.py
from fastapi import APIRouter
from app.routes.choices import choice_routes


api_router = APIRouter()

# Choice routes
api_router.include_router(choice_routes.router)
