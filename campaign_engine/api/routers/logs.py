"""Execution error routes."""

from fastapi import APIRouter, Depends, HTTPException

from campaign_engine.api.deps import get_engine
from campaign_engine.engine import error_handler

router = APIRouter(prefix="/api/errors", tags=["errors"])


@router.get("")
def list_errors(campaign_id: str = None, severity: str = None, include_resolved: bool = False,
                engine=Depends(get_engine)):
    return error_handler.get_errors(engine.repo.db_path, campaign_id=campaign_id,
                                    severity=severity, unresolved_only=not include_resolved)


@router.post("/{error_id}/resolve")
def resolve_error(error_id: int, engine=Depends(get_engine)):
    if not error_handler.resolve_error(engine.repo.db_path, error_id):
        raise HTTPException(status_code=404, detail="Error not found")
    return {"id": error_id, "resolved": True}
