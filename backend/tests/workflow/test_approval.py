"""
ShelVey Orchestrator - Approval Gate Tests
==========================================

Dual approval: complete only when both the authority agent and a human
have approved, in either order.
"""

from types import SimpleNamespace

import pytest

from shelvey.core.workflow.approval import ApprovalGate, Approver


class TestApprover:
    """Tests for parsing approver names."""

    @pytest.mark.parametrize("value", ["authority", "ceo", "CEO", "agent"])
    def test_authority_aliases(self, value: str):
        assert Approver.parse(value) == Approver.AUTHORITY

    @pytest.mark.parametrize("value", ["human", "user", "User"])
    def test_human_aliases(self, value: str):
        assert Approver.parse(value) == Approver.HUMAN

    def test_unknown_approver_rejected(self):
        with pytest.raises(ValueError, match="Invalid approver"):
            Approver.parse("intern")


class TestApprovalGate:
    """Tests for the gate value."""

    def test_new_gate_is_pending_on_both(self):
        gate = ApprovalGate()

        assert not gate.complete
        assert gate.pending == [Approver.AUTHORITY, Approver.HUMAN]

    @pytest.mark.parametrize("approver", [Approver.AUTHORITY, Approver.HUMAN])
    def test_single_approval_never_completes(self, approver: Approver):
        gate = ApprovalGate().approve(approver)

        assert gate.is_approved_by(approver)
        assert not gate.complete
        assert len(gate.pending) == 1

    def test_order_is_irrelevant(self):
        authority_first = ApprovalGate().approve(Approver.AUTHORITY).approve(Approver.HUMAN)
        human_first = ApprovalGate().approve(Approver.HUMAN).approve(Approver.AUTHORITY)

        assert authority_first == human_first
        assert authority_first.complete
        assert authority_first.pending == []

    def test_repeated_approval_is_noop(self):
        gate = ApprovalGate().approve(Approver.HUMAN)

        assert gate.approve(Approver.HUMAN) is gate

    def test_gate_is_immutable(self):
        gate = ApprovalGate()
        gate.approve(Approver.AUTHORITY)

        assert not gate.authority_approved

    def test_round_trip_through_record(self):
        record = SimpleNamespace(authority_approved=True, human_approved=None)

        gate = ApprovalGate.of(record)
        assert gate == ApprovalGate(authority_approved=True, human_approved=False)

        gate.approve(Approver.HUMAN).apply_to(record)
        assert record.authority_approved is True
        assert record.human_approved is True
