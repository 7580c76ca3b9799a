"""Campaign lifecycle routes: create, launch, pause/resume, advance, metrics."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from campaign_engine.api.deps import get_engine

router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])


class WorkflowStepIn(BaseModel):
    channel: str
    content: str
    subject: Optional[str] = None
    delay: float = 0
    delay_unit: str = "days"
    confidence: Optional[int] = None


class CampaignCreate(BaseModel):
    workspace_id: str
    name: str
    workflow: List[WorkflowStepIn]
    owner_id: Optional[str] = None
    autonomy_level: Optional[str] = None
    confidence_threshold: Optional[int] = None


class ContactCreate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    linkedin_url: Optional[str] = None
    company: Optional[str] = None
    title: Optional[str] = None
    personalization: Optional[dict] = {}


class LaunchRequest(BaseModel):
    contact_ids: List[str] = Field(default_factory=list)


class AutonomyUpdate(BaseModel):
    autonomy_level: Optional[str] = None
    confidence_threshold: Optional[int] = None


@router.post("")
def create_campaign(data: CampaignCreate, engine=Depends(get_engine)):
    return engine.scheduler.create_campaign(
        workspace_id=data.workspace_id,
        name=data.name,
        workflow=[s.model_dump() for s in data.workflow],
        owner_id=data.owner_id,
        autonomy_level=data.autonomy_level,
        confidence_threshold=data.confidence_threshold,
    )


@router.get("")
def list_campaigns(workspace_id: str = None, status: str = None, limit: int = 100,
                   offset: int = 0, engine=Depends(get_engine)):
    return engine.repo.list_campaigns(workspace_id=workspace_id, status=status,
                                      limit=limit, offset=offset)


@router.get("/{campaign_id}")
def get_campaign(campaign_id: str, engine=Depends(get_engine)):
    campaign = engine.scheduler.get_campaign(campaign_id)
    campaign["step_counts"] = engine.repo.count_steps_by_status(campaign_id)
    return campaign


@router.post("/{campaign_id}/contacts")
def add_contact(campaign_id: str, data: ContactCreate, engine=Depends(get_engine)):
    return engine.scheduler.add_contact(campaign_id, data.model_dump())


@router.post("/{campaign_id}/launch")
def launch_campaign(campaign_id: str, data: LaunchRequest, engine=Depends(get_engine)):
    if not data.contact_ids:
        raise HTTPException(status_code=400, detail="contact_ids must not be empty")
    return engine.scheduler.launch(campaign_id, data.contact_ids)


@router.post("/{campaign_id}/pause")
def pause_campaign(campaign_id: str, engine=Depends(get_engine)):
    return engine.scheduler.pause(campaign_id)


@router.post("/{campaign_id}/resume")
def resume_campaign(campaign_id: str, engine=Depends(get_engine)):
    return engine.scheduler.resume(campaign_id)


@router.post("/{campaign_id}/advance")
def advance_campaign(campaign_id: str, engine=Depends(get_engine)):
    """Process this campaign's due steps now instead of waiting for the next poll."""
    return engine.orchestrator.process_campaign(campaign_id)


@router.patch("/{campaign_id}/autonomy")
def update_autonomy(campaign_id: str, data: AutonomyUpdate, engine=Depends(get_engine)):
    if data.autonomy_level is None and data.confidence_threshold is None:
        raise HTTPException(status_code=400, detail="No fields to update")
    return engine.scheduler.update_autonomy(campaign_id, data.autonomy_level,
                                            data.confidence_threshold)


@router.get("/{campaign_id}/steps")
def list_steps(campaign_id: str, status: str = None, contact_id: str = None,
               engine=Depends(get_engine)):
    engine.scheduler.get_campaign(campaign_id)
    return engine.repo.list_steps(campaign_id, status=status, contact_id=contact_id)


@router.post("/{campaign_id}/metrics")
def record_metrics(campaign_id: str, engine=Depends(get_engine)):
    """Write an ExecutionLog snapshot of the campaign's step counts."""
    return engine.run_logger.record(campaign_id, execution_type="metrics_snapshot")


@router.get("/{campaign_id}/logs")
def list_logs(campaign_id: str, limit: int = 50, engine=Depends(get_engine)):
    engine.scheduler.get_campaign(campaign_id)
    return engine.run_logger.list_logs(campaign_id, limit=limit)
