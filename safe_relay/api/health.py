from typing import Any, Dict

from fastapi import APIRouter, Depends

from .deps import RelayServices, get_services

router = APIRouter()


@router.get("/healthz")
async def health_check(services: RelayServices = Depends(get_services)) -> Dict[str, Any]:
    """Liveness plus live connection counts"""
    supported = getattr(services.gateways, "supported_chain_ids", None)
    return {
        "status": "healthy" if services.has_relayer_key else "degraded",
        "relayerConfigured": services.has_relayer_key,
        "supportedChains": supported() if supported else [],
        "connections": services.registry.stats(),
    }
