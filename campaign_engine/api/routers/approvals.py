"""Approval queue routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from campaign_engine.api.deps import get_engine

router = APIRouter(prefix="/api/approvals", tags=["approvals"])


class ResolutionRequest(BaseModel):
    resolver_id: str
    notes: Optional[str] = None


@router.get("")
def list_pending(workspace_id: str = None, campaign_id: str = None, limit: int = 100,
                 engine=Depends(get_engine)):
    return engine.approvals.list_pending(workspace_id=workspace_id, campaign_id=campaign_id,
                                         limit=limit)


@router.get("/{approval_id}")
def get_approval(approval_id: str, engine=Depends(get_engine)):
    return engine.approvals.get(approval_id)


@router.post("/{approval_id}/approve")
def approve(approval_id: str, data: ResolutionRequest, engine=Depends(get_engine)):
    if not data.resolver_id.strip():
        raise HTTPException(status_code=400, detail="resolver_id is required")
    return engine.orchestrator.resolve_approval(approval_id, "approved", data.resolver_id, data.notes)


@router.post("/{approval_id}/reject")
def reject(approval_id: str, data: ResolutionRequest, engine=Depends(get_engine)):
    if not data.resolver_id.strip():
        raise HTTPException(status_code=400, detail="resolver_id is required")
    return engine.orchestrator.resolve_approval(approval_id, "rejected", data.resolver_id, data.notes)
