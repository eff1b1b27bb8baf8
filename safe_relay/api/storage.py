from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .deps import RelayServices, get_services

router = APIRouter(prefix="/api/safe")


class BackupRequest(BaseModel):
    userAddress: str = Field(..., description="Owner whose Safes are backed up")
    safes: List[Dict[str, Any]] = Field(default_factory=list, description="Safe metadata to store")


@router.post("/storage")
async def backup_safes(
    request: BackupRequest,
    services: RelayServices = Depends(get_services),
) -> Dict[str, Any]:
    stored = services.blob_store.put(request.userAddress, request.safes)
    return {
        "success": True,
        "message": f"Backed up {len(request.safes)} safe(s)",
        "lastBackup": stored["lastBackup"],
    }


@router.get("/storage")
async def restore_safes(
    address: str = Query(..., description="Owner address"),
    services: RelayServices = Depends(get_services),
):
    stored = services.blob_store.get(address)
    if stored is None:
        return JSONResponse(
            status_code=404,
            content={"error": "No backup found", "details": f"No stored Safes for {address.lower()}"},
        )
    return {"success": True, **stored}
