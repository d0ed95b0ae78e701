"""API routes for the OpenSens OSINT service."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response

from opensens import Aggregator, InvalidRequestError, __version__

router = APIRouter()


def _aggregator(request: Request) -> Aggregator:
    aggregator = getattr(request.app.state, "aggregator", None)
    if aggregator is None:
        raise HTTPException(status_code=503, detail="aggregator not initialized")
    return aggregator


@router.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


@router.get("/api/osint/connectors")
async def list_connectors(request: Request) -> Dict[str, Any]:
    """Connector catalog with credential and circuit status (never the secrets)."""
    aggregator = _aggregator(request)
    state = aggregator.state
    connectors = []
    for connector in aggregator.registry.all():
        meta = connector.meta
        entry = meta.to_dict()
        entry["credentialsConfigured"] = state.gate.has_credentials(meta)
        entry["circuit"] = state.breaker.status(meta.id).value
        connectors.append(entry)
    return {"connectors": connectors}


@router.get("/api/osint/aggregate")
async def aggregate(
    request: Request,
    response: Response,
    bbox: str = Query("-180,-90,180,90", description="minLon,minLat,maxLon,maxLat"),
    timespan: str = Query("3d", description="Time range (24h, 3d, 1w; max 90d)"),
    connectors: Optional[str] = Query(None, description="Comma-separated connector ids"),
) -> Dict[str, Any]:
    """Fuse OSINT signals for a bounding box and time range."""
    aggregator = _aggregator(request)
    enabled = [c.strip() for c in connectors.split(",") if c.strip()] if connectors is not None else None
    try:
        composite = await aggregator.aggregate(bbox, timespan, enabled)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))

    config = aggregator.config
    fresh = int(config.cache_fresh_ttl)
    revalidate = max(0, int(config.cache_stale_ttl - config.cache_fresh_ttl))
    response.headers["Cache-Control"] = f"public, s-maxage={fresh}, stale-while-revalidate={revalidate}"
    response.headers["X-OpenSens-Contributors"] = ",".join(composite.contributors)
    return composite.to_dict()
