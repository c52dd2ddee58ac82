"""
ShelVey Orchestrator - Error Taxonomy
======================================

Business-invariant errors raised by the workflow engine. The API layer maps
each class to a failure envelope and HTTP status code.
"""

from typing import Optional


class OrchestrationError(Exception):
    """Base class for all workflow errors."""

    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnknownAction(OrchestrationError):
    """Requested action is not part of the public contract."""

    def __init__(self, action: Optional[str]):
        super().__init__(f"Unknown action: {action}")
        self.action = action


class NotFound(OrchestrationError):
    """Unknown project, phase, team, deliverable or escalation id."""

    status_code = 404

    def __init__(self, entity: str, identifier: object):
        super().__init__(f"{entity} not found: {identifier}")
        self.entity = entity
        self.identifier = identifier


class PrerequisiteNotMet(OrchestrationError):
    """Phase activated out of order."""

    status_code = 409

    def __init__(self, phase_number: int, required_phase: int, required_status: str):
        super().__init__(
            f"Phase {phase_number} cannot be activated: phase {required_phase} "
            f"must be completed first (current status: {required_status})"
        )
        self.phase_number = phase_number
        self.required_phase = required_phase
        self.required_status = required_status


class ApprovalsPending(OrchestrationError):
    """Phase completion requested while deliverables still lack dual approval."""

    status_code = 409

    def __init__(self, phase_number: int, unapproved: int, total: int):
        super().__init__(
            f"Phase {phase_number} cannot be completed: {unapproved} of {total} "
            f"deliverables still need authority and human approval"
        )
        self.phase_number = phase_number
        self.unapproved = unapproved
        self.total = total


class InvalidPhaseTransition(OrchestrationError):
    """Phase is not in the state the transition expects."""

    status_code = 409

    def __init__(self, phase_number: int, operation: str, expected: list[str], actual: str):
        super().__init__(
            f"Phase {phase_number} cannot {operation}: expected status "
            f"{' or '.join(expected)}, found {actual}"
        )
        self.phase_number = phase_number
        self.operation = operation
        self.expected = expected
        self.actual = actual


class InvalidLevelTransition(OrchestrationError):
    """Escalation promoted from an unexpected level, or changed after resolution."""

    status_code = 409

    def __init__(
        self,
        escalation_id: object,
        operation: str,
        expected_level: Optional[int],
        actual_level: int,
        actual_status: str,
    ):
        if expected_level is None:
            expected = "an unresolved escalation"
        else:
            expected = f"level {expected_level}"
        super().__init__(
            f"Escalation {escalation_id} cannot {operation}: expected {expected}, "
            f"found level {actual_level} (status {actual_status})"
        )
        self.escalation_id = escalation_id
        self.operation = operation
        self.expected_level = expected_level
        self.actual_level = actual_level
        self.actual_status = actual_status


class ConcurrentModification(OrchestrationError):
    """A concurrent writer changed the row between read and write."""

    status_code = 409

    def __init__(self, entity: str, identifier: object):
        super().__init__(
            f"{entity} {identifier} was modified concurrently; re-read and retry"
        )
        self.entity = entity
        self.identifier = identifier


class ExternalDispatchFailure(OrchestrationError):
    """Notification/email/work-trigger delivery failed. Never fatal to a transition."""

    status_code = 502

    def __init__(self, kind: str, reason: str):
        super().__init__(f"Dispatch of {kind} failed: {reason}")
        self.kind = kind
        self.reason = reason
