"""Main API router"""
from fastapi import APIRouter

from ccrelay.api import messages, metrics

api_router = APIRouter(prefix='/v1')

api_router.include_router(messages.router, tags=['messages'])

metrics_router = APIRouter()
metrics_router.include_router(metrics.router, tags=['metrics'])
