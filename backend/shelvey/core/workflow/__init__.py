"""
ShelVey Workflow Engine
=======================

Drives a business project through six ordered phases, each owned by a team,
and routes agent escalations up the manager → CEO → human path.

Components:
- PhaseOrchestrator: Phase lifecycle, team activation, deliverable approval
- EscalationEngine: Escalation levels, resolution, timeout sweep
- ApprovalGate: Dual authority/human approval value
- EffectDispatcher: Outbox delivery to external collaborators
- TimeoutScheduler: Optional in-process timeout sweep
"""

from shelvey.core.workflow.approval import ApprovalGate, Approver
from shelvey.core.workflow.effects import DrainResult, EffectDispatcher
from shelvey.core.workflow.escalation import EscalationEngine
from shelvey.core.workflow.orchestrator import PhaseOrchestrator
from shelvey.core.workflow.scheduler import TimeoutScheduler
from shelvey.core.workflow.templates import PHASE_TEMPLATES, TOTAL_PHASES

__all__ = [
    "PhaseOrchestrator",
    "EscalationEngine",
    "ApprovalGate",
    "Approver",
    "EffectDispatcher",
    "DrainResult",
    "TimeoutScheduler",
    "PHASE_TEMPLATES",
    "TOTAL_PHASES",
]
