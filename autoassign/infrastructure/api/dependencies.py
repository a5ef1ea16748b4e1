"""FastAPI dependency injection: wires adapters into the coordinator."""

from __future__ import annotations

import logging

from autoassign.adapters.persistence.database import async_session_factory
from autoassign.adapters.persistence.repositories import (
    SqlAgentSource,
    SqlAssignmentSink,
    SqlAssignmentStore,
    SqlAuditLog,
    SqlEscalationQueue,
    SqlRuleSource,
)
from autoassign.adapters.webhook.webhook_sink import WebhookAssignmentSink
from autoassign.application.services.agent_directory import AgentDirectory
from autoassign.application.services.rule_repository import RuleRepository
from autoassign.application.services.workload_tracker import WorkloadTracker
from autoassign.application.use_cases.assign_ticket import AssignmentCoordinator
from autoassign.config import Settings, settings

logger = logging.getLogger(__name__)

# The coordinator holds the workload tracker and the ledger, so there is
# exactly one per process.
_coordinator: AssignmentCoordinator | None = None


def build_coordinator(cfg: Settings = settings) -> AssignmentCoordinator:
    retry = cfg.retry_policy()
    directory = AgentDirectory(
        SqlAgentSource(async_session_factory),
        WorkloadTracker(),
        retry=retry,
        ttl_seconds=cfg.directory_ttl_seconds,
    )
    rules = RuleRepository(
        SqlRuleSource(async_session_factory),
        retry=retry,
        ttl_seconds=cfg.rules_ttl_seconds,
    )

    if cfg.webhook_url:
        webhook = WebhookAssignmentSink(cfg.webhook_url, timeout=cfg.webhook_timeout)
        sink, escalations = webhook, webhook
        logger.info("Propagating decisions to webhook %s", cfg.webhook_url)
    else:
        sink = SqlAssignmentSink(async_session_factory)
        escalations = SqlEscalationQueue(async_session_factory)

    return AssignmentCoordinator(
        directory=directory,
        rules=rules,
        audit_log=SqlAuditLog(async_session_factory),
        assignment_sink=sink,
        escalation_queue=escalations,
        assignment_store=SqlAssignmentStore(async_session_factory),
        config=cfg.engine_config(),
    )


def get_coordinator() -> AssignmentCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = build_coordinator()
    return _coordinator
