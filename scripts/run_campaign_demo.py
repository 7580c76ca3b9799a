#!/usr/bin/env python3
"""
End-to-end campaign run: create -> launch -> poll -> approve -> poll -> report.
Runs entirely offline against a throwaway database with a recording sender.

Scenario: semi-autonomous campaign, threshold 80, one contact, two steps
    1. email (confidence 90)              -> auto-sent on the first poll
    2. linkedin_connection (confidence 70) -> routed to the approval queue

Usage:
    python scripts/run_campaign_demo.py
    python scripts/run_campaign_demo.py --keep-db demo.db   # Keep the database afterwards
"""

import argparse
import os
import sys
import tempfile

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from campaign_engine.engine.channels import RecordingChannelSender
from campaign_engine.engine.factory import build_engine
from campaign_engine.engine.guardrails import Guardrails
from campaign_engine.engine.rate_control import UnlimitedRateController
from campaign_engine.logging_config import setup_logging


WORKFLOW = [
    {"channel": "email", "subject": "Quick question, {{first_name}}",
     "content": "Hi {{first_name}}, saw what {{company}} is building and had an idea.",
     "delay": 0, "confidence": 90},
    {"channel": "linkedin_connection",
     "content": "Hi {{first_name}}, following up on my email - would love to connect.",
     "delay": 0, "confidence": 70},
]


def _print_steps(engine, campaign_id):
    for step in engine.repo.list_steps(campaign_id):
        print(f"    step {step['step_index']} [{step['channel']:<20}] {step['status']:<18}"
              f" message_id={step['message_id'] or '-'}")


def _print_log(log):
    print(f"    run {log['id']}: total={log['total_steps']} completed={log['completed_steps']}"
          f" failed={log['failed_steps']} pending_approval={log['pending_approval_steps']}"
          f" autonomy={log['autonomy_level_used']}")


def main():
    parser = argparse.ArgumentParser(description="Offline end-to-end campaign run.")
    parser.add_argument("--keep-db", type=str, help="Write the database here instead of a temp file")
    args = parser.parse_args()

    setup_logging(level="WARNING")
    db_path = args.keep_db or os.path.join(tempfile.mkdtemp(), "demo.db")

    sender = RecordingChannelSender()
    engine = build_engine(db_path=db_path, sender=sender,
                          rate_controller=UnlimitedRateController(),
                          guardrails=Guardrails(keywords=[], working_hours_only=False))

    print("=" * 70)
    print("CAMPAIGN ENGINE DEMO")
    print("=" * 70)

    contact = engine.repo.create_contact({
        "workspace_id": "ws_demo", "first_name": "Sarah", "last_name": "Chen",
        "email": "sarah.chen@payflow.com", "company": "PayFlow",
        "linkedin_url": "https://linkedin.com/in/sarahchen",
    })
    campaign = engine.scheduler.create_campaign(
        workspace_id="ws_demo", name="Demo outreach", workflow=WORKFLOW,
        autonomy_level="semi_autonomous", confidence_threshold=80,
    )
    launched = engine.scheduler.launch(campaign["id"], [contact["id"]])
    print(f"\n[1/4] LAUNCHED {campaign['id']} ({launched['scheduled']} steps)")
    _print_steps(engine, campaign["id"])

    print("\n[2/4] FIRST POLL")
    result = engine.orchestrator.run_once()
    print(f"    outcomes: {result['outcomes']}")
    print("\n[3/4] SECOND POLL (step 2 released by the advancer)")
    result = engine.orchestrator.run_once()
    print(f"    outcomes: {result['outcomes']}")
    _print_steps(engine, campaign["id"])
    for log in result["runs"]:
        _print_log(log["execution_log"])

    pending = engine.approvals.list_pending(campaign_id=campaign["id"])
    print(f"\n[4/4] APPROVING {len(pending)} item(s)")
    for item in pending:
        print(f"    {item['id']}: {item['sophia_reasoning']}")
        resolved = engine.orchestrator.resolve_approval(item["id"], "approved", "demo_user")
        print(f"    -> {resolved['outcome']}")
    _print_steps(engine, campaign["id"])
    _print_log(engine.run_logger.record(campaign["id"]))

    print(f"\n{'=' * 70}")
    print(f"Sender calls: {len(sender.sent)}")
    for call in sender.sent:
        print(f"  {call['channel']:<20} -> {call['recipient']}")
    print(f"Database: {db_path}")
    print("=" * 70)


if __name__ == "__main__":
    main()
