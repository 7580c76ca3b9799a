"""
Engine wiring. build_engine() is the one place components are put together;
nothing in the engine holds process-wide state.
"""

import socket
from typing import NamedTuple

from campaign_engine import config
from campaign_engine.db.connection import gen_id, utcnow
from campaign_engine.db.init_db import init_db
from campaign_engine.db.repository import CampaignRepository
from campaign_engine.engine.advancer import StepAdvancer
from campaign_engine.engine.approvals import ApprovalQueueManager
from campaign_engine.engine.channels import HttpChannelSender
from campaign_engine.engine.executor import StepExecutor
from campaign_engine.engine.guardrails import Guardrails
from campaign_engine.engine.orchestrator import ExecutionOrchestrator
from campaign_engine.engine.rate_control import StepCountRateController
from campaign_engine.engine.retry import build_retry_policy
from campaign_engine.engine.run_logger import CampaignRunLogger
from campaign_engine.engine.scheduler import CampaignScheduler


class CampaignEngine(NamedTuple):
    repo: CampaignRepository
    scheduler: CampaignScheduler
    approvals: ApprovalQueueManager
    executor: StepExecutor
    advancer: StepAdvancer
    run_logger: CampaignRunLogger
    orchestrator: ExecutionOrchestrator


def build_engine(db_path: str = None, sender=None, rate_controller=None, retry_policy=None,
                 guardrails=None, clock=None, worker_id: str = None,
                 initialize: bool = True) -> CampaignEngine:
    """Wire a full engine against one database.

    Defaults: HTTP gateway sender, step-count rate limits, the configured retry
    policy and guardrails, and the real UTC clock.
    """
    path = db_path or config.DB_PATH
    if initialize:
        init_db(path, verbose=False)

    clock = clock or utcnow
    worker_id = worker_id or f"{socket.gethostname()}:{gen_id('w')}"
    repo = CampaignRepository(path)
    sender = sender or HttpChannelSender()
    rate_controller = rate_controller or StepCountRateController(repo, clock=clock)
    retry_policy = retry_policy or build_retry_policy()

    approvals = ApprovalQueueManager(repo, clock=clock)
    advancer = StepAdvancer(repo, clock=clock)
    run_logger = CampaignRunLogger(repo, clock=clock)
    executor = StepExecutor(repo, sender, rate_controller=rate_controller,
                            retry_policy=retry_policy, clock=clock,
                            worker_id=worker_id)
    orchestrator = ExecutionOrchestrator(
        repo, approvals, executor, advancer, run_logger,
        guardrails=guardrails or Guardrails(), clock=clock, worker_id=worker_id,
    )
    return CampaignEngine(
        repo=repo,
        scheduler=CampaignScheduler(repo, clock=clock),
        approvals=approvals,
        executor=executor,
        advancer=advancer,
        run_logger=run_logger,
        orchestrator=orchestrator,
    )
