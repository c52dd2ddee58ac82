"""
Approval Gate - dual authority/human approval.

A deliverable is complete only when both the authority agent and a human
have approved it. Either may approve first, and approving twice is a no-op.
"""

import enum
from dataclasses import dataclass, replace
from typing import Protocol


class Approver(str, enum.Enum):
    """Party granting an approval."""
    AUTHORITY = "authority"  # Senior authority agent (CEO agent)
    HUMAN = "human"

    @classmethod
    def parse(cls, value: str) -> "Approver":
        """Accept the legacy names used by clients ('ceo', 'user')."""
        aliases = {
            "authority": cls.AUTHORITY,
            "ceo": cls.AUTHORITY,
            "agent": cls.AUTHORITY,
            "human": cls.HUMAN,
            "user": cls.HUMAN,
        }
        try:
            return aliases[value.lower()]
        except (KeyError, AttributeError):
            raise ValueError(f"Invalid approver: {value}. Valid: authority, human")


class Approvable(Protocol):
    authority_approved: bool
    human_approved: bool


@dataclass(frozen=True)
class ApprovalGate:
    """Immutable pair of approval flags."""

    authority_approved: bool = False
    human_approved: bool = False

    @classmethod
    def of(cls, record: Approvable) -> "ApprovalGate":
        return cls(
            authority_approved=bool(record.authority_approved),
            human_approved=bool(record.human_approved),
        )

    @property
    def complete(self) -> bool:
        return self.authority_approved and self.human_approved

    @property
    def pending(self) -> list[Approver]:
        waiting = []
        if not self.authority_approved:
            waiting.append(Approver.AUTHORITY)
        if not self.human_approved:
            waiting.append(Approver.HUMAN)
        return waiting

    def is_approved_by(self, approver: Approver) -> bool:
        if approver == Approver.AUTHORITY:
            return self.authority_approved
        return self.human_approved

    def approve(self, approver: Approver) -> "ApprovalGate":
        """Set exactly one flag. Returns self unchanged if already set."""
        if self.is_approved_by(approver):
            return self
        if approver == Approver.AUTHORITY:
            return replace(self, authority_approved=True)
        return replace(self, human_approved=True)

    def apply_to(self, record: Approvable) -> None:
        record.authority_approved = self.authority_approved
        record.human_approved = self.human_approved
