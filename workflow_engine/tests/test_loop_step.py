"""
Tests for LoopStepExecutor.
"""

import pytest

from conftest import QuerySimulator, audit_trail
from workflow_engine import RunStatus
from workflow_engine.types import AuditStatus

LOOP = """
name: review-loop
{safety}
phases:
  - name: review-loop
    type: loop
    condition: review.hasActionableIssues
    maxRetries: {retries}
    onExhausted: {policy}
    output: loopState
    steps:
      - name: fix
        agent: fixer
        condition: review.hasActionableIssues
      - name: inspect
        agent: inspector
        output: review
  - name: after
    agent: fixer
"""

DIRTY = {"hasActionableIssues": True}
CLEAN = {"hasActionableIssues": False}


@pytest.fixture
def loop_workflow(project):
    project.add_agent("fixer")
    project.add_agent("inspector")

    def write(policy="escalate", retries=2, safety=""):
        project.add_workflow("review-loop", LOOP.format(policy=policy, retries=retries, safety=safety))
        return "review-loop"

    return write


class TestLoop:
    """Tests for loop retries and exhaustion policies"""

    @pytest.mark.asyncio
    async def test_escalate_pauses(self, loop_workflow, make_engine):
        simulator = QuerySimulator({"inspector": DIRTY})
        engine = make_engine(simulator)

        result = await engine.run(loop_workflow(), "spec.md")

        assert result.status == RunStatus.PAUSED
        assert result.paused_at_phase == "review-loop"
        assert result.blocker_details == (
            'Loop exhausted 2 retries. Condition "review.hasActionableIssues" still true.'
        )
        assert result.checkpoint["variables"]["loopState"] == {"iterations": 2, "exhausted": True}
        assert result.checkpoint["completedPhases"] == []
        # First attempt runs inspect only; the fixer runs once review exists.
        assert len(simulator.calls_for("inspector")) == 2
        assert len(simulator.calls_for("fixer")) == 1
        assert ("review-loop", "failed") in audit_trail(engine)

    @pytest.mark.asyncio
    async def test_early_exit(self, loop_workflow, make_engine):
        simulator = QuerySimulator({"inspector": [DIRTY, CLEAN]})

        result = await make_engine(simulator).run(loop_workflow(retries=5), "spec.md")

        assert result.status == RunStatus.COMPLETED
        assert result.outputs["loopState"] == {"iterations": 2, "exhausted": False}
        assert len(simulator.calls_for("inspector")) == 2
        assert result.completed_phases == ["review-loop", "after"]

    @pytest.mark.asyncio
    async def test_single_pass_when_clean(self, loop_workflow, make_engine):
        simulator = QuerySimulator({"inspector": CLEAN})

        result = await make_engine(simulator).run(loop_workflow(retries=3), "spec.md")

        assert result.outputs["loopState"]["iterations"] == 1
        assert len(simulator.calls_for("inspector")) == 1

    @pytest.mark.asyncio
    async def test_fail_policy(self, loop_workflow, make_engine):
        result = await make_engine(QuerySimulator({"inspector": DIRTY})).run(
            loop_workflow(policy="fail"), "spec.md"
        )

        assert result.status == RunStatus.FAILED
        assert result.error == "Loop exhausted 2 retries"

    @pytest.mark.asyncio
    async def test_warn_policy_continues(self, loop_workflow, make_engine):
        simulator = QuerySimulator({"inspector": DIRTY})
        engine = make_engine(simulator)

        result = await engine.run(loop_workflow(policy="warn"), "spec.md")

        assert result.status == RunStatus.COMPLETED
        assert result.completed_phases == ["review-loop", "after"]
        completed = [
            e for e in engine.get_audit_log() if e.step == "review-loop" and e.status == AuditStatus.COMPLETED
        ]
        assert completed[0].metadata == {"warning": "Loop exhausted 2 retries, continuing"}

    @pytest.mark.asyncio
    async def test_safety_caps_retries(self, loop_workflow, make_engine):
        simulator = QuerySimulator({"inspector": DIRTY})

        result = await make_engine(simulator).run(
            loop_workflow(retries=10, safety="safety:\n  maxLoopRetries: 3"), "spec.md"
        )

        assert result.status == RunStatus.PAUSED
        assert "exhausted 3 retries" in result.blocker_details
        assert len(simulator.calls_for("inspector")) == 3

    @pytest.mark.asyncio
    async def test_resume_after_escalation(self, loop_workflow, make_engine):
        """A paused loop resumes from its own phase with the saved variables"""
        workflow = loop_workflow()
        paused = await make_engine(QuerySimulator({"inspector": DIRTY})).run(workflow, "spec.md")

        simulator = QuerySimulator({"inspector": CLEAN})
        result = await make_engine(simulator).resume(workflow, paused.checkpoint, paused.paused_at_phase)

        assert result.status == RunStatus.COMPLETED
        assert result.outputs["specPath"] == "spec.md"
        # The saved review is still dirty, so the fixer runs before the clean inspection.
        assert [call["agent"] for call in simulator.calls] == ["fixer", "inspector", "fixer"]
