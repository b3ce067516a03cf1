"""Prometheus metrics endpoint"""
from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get('/metrics')
async def metrics() -> Response:
    """Expose collected metrics in the Prometheus text format"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
