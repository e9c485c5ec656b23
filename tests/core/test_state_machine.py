"""Tests for the deployment and task-run transition tables and guards."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from pxe_fleet.core.errors import InvalidTransition
from pxe_fleet.core.models import (
    Deployment,
    DeploymentStatus,
    ScheduleType,
    TaskRun,
    TaskRunStatus,
    TaskType,
)
from pxe_fleet.core.scheduling.state_machine import (
    DEPLOYMENT_TRANSITIONS,
    can_transition,
    check_progress,
    check_task_progress,
    check_task_transition,
    check_transition,
    finish_changes,
    signal_failed_changes,
)

S = DeploymentStatus
NOW = datetime(2024, 1, 1, 1, 30, tzinfo=UTC)


def _deployment(status: DeploymentStatus, progress: int = 0, **kw) -> Deployment:
    defaults = dict(
        id="d-1",
        device_id="lab-01",
        image_id="win11",
        status=status,
        schedule_type=ScheduleType.IMMEDIATE,
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
        updated_at=datetime(2024, 1, 1, tzinfo=UTC),
        progress=progress,
    )
    defaults.update(kw)
    return Deployment(**defaults)


def _task(status: TaskRunStatus, progress: int = 0) -> TaskRun:
    return TaskRun(
        id="t-1",
        deployment_id="d-1",
        task_type=TaskType.HOSTNAME,
        status=status,
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
        progress=progress,
    )


class TestTransitionTable:
    @pytest.mark.parametrize(
        "current,target",
        [
            (S.SCHEDULED, S.PENDING),
            (S.SCHEDULED, S.CANCELLED),
            (S.PENDING, S.DEPLOYING),
            (S.PENDING, S.CANCELLED),
            (S.DEPLOYING, S.POST_PROCESSING),
            (S.DEPLOYING, S.FAILED),
            (S.DEPLOYING, S.CANCELLED),
            (S.POST_PROCESSING, S.COMPLETED),
            (S.POST_PROCESSING, S.FAILED),
            (S.POST_PROCESSING, S.CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (S.SCHEDULED, S.DEPLOYING),
            (S.PENDING, S.COMPLETED),
            (S.PENDING, S.FAILED),
            (S.DEPLOYING, S.COMPLETED),
            (S.POST_PROCESSING, S.DEPLOYING),
            (S.COMPLETED, S.SCHEDULED),
            (S.CANCELLED, S.PENDING),
        ],
    )
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_terminal_states_have_no_exits(self):
        for status in (S.COMPLETED, S.FAILED, S.CANCELLED):
            assert DEPLOYMENT_TRANSITIONS[status] == frozenset()


class TestCheckTransition:
    def test_illegal_move_raises_with_states(self):
        with pytest.raises(InvalidTransition) as exc_info:
            check_transition(_deployment(S.SCHEDULED), S.DEPLOYING)
        assert exc_info.value.current == "scheduled"
        assert exc_info.value.target == "deploying"
        assert exc_info.value.context.deployment_id == "d-1"

    def test_deploying_requires_zero_progress(self):
        with pytest.raises(InvalidTransition, match="progress 0"):
            check_transition(_deployment(S.PENDING, progress=10), S.DEPLOYING)

    def test_completed_requires_full_progress(self):
        with pytest.raises(InvalidTransition, match="progress 100"):
            check_transition(_deployment(S.POST_PROCESSING, progress=90), S.COMPLETED)

    def test_completed_at_full_progress(self):
        check_transition(_deployment(S.POST_PROCESSING, progress=100), S.COMPLETED)


class TestCheckProgress:
    def test_only_while_deploying(self):
        with pytest.raises(InvalidTransition):
            check_progress(_deployment(S.PENDING), 10)

    def test_never_backwards(self):
        with pytest.raises(InvalidTransition, match="backwards"):
            check_progress(_deployment(S.DEPLOYING, progress=50), 25)

    @pytest.mark.parametrize("value", [-1, 101])
    def test_range(self, value):
        with pytest.raises(InvalidTransition):
            check_progress(_deployment(S.DEPLOYING), value)

    def test_same_value_is_allowed(self):
        check_progress(_deployment(S.DEPLOYING, progress=50), 50)


class TestFinishChanges:
    def test_one_shot_completes(self):
        changes = finish_changes(_deployment(S.POST_PROCESSING, progress=100), S.COMPLETED, NOW)
        assert changes == {"completed_at": NOW, "status": S.COMPLETED}

    def test_one_shot_failure_has_default_message(self):
        changes = finish_changes(_deployment(S.DEPLOYING, progress=40), S.FAILED, NOW)
        assert changes["status"] == S.FAILED
        assert changes["error_message"] == "Deployment failed"

    def test_failure_message(self):
        changes = finish_changes(_deployment(S.DEPLOYING), S.FAILED, NOW, "disk not found")
        assert changes["error_message"] == "disk not found"

    def test_recurring_completion_rearms(self):
        deployment = _deployment(
            S.POST_PROCESSING,
            progress=100,
            schedule_type=ScheduleType.RECURRING,
            recurring_pattern="0 1 * * *",
            last_run_at=datetime(2024, 1, 1, 1, 0, 1, tzinfo=UTC),
        )
        changes = finish_changes(deployment, S.COMPLETED, NOW)
        assert changes["status"] == S.SCHEDULED
        assert changes["next_run_at"] == datetime(2024, 1, 2, 1, 0, tzinfo=UTC)
        assert changes["completed_at"] == NOW

    def test_recurring_failure_rearms_and_keeps_error(self):
        deployment = _deployment(
            S.DEPLOYING,
            progress=30,
            schedule_type=ScheduleType.RECURRING,
            recurring_pattern="0 * * * *",
            last_run_at=datetime(2024, 1, 1, 1, 0, tzinfo=UTC),
        )
        changes = finish_changes(deployment, S.FAILED, NOW, "timeout")
        assert changes["status"] == S.SCHEDULED
        assert changes["error_message"] == "timeout"
        assert changes["next_run_at"] == datetime(2024, 1, 1, 2, 0, tzinfo=UTC)

    def test_missed_occurrence_stays_due(self):
        # Finished long after the following occurrence passed: it fires once on the next tick
        deployment = _deployment(
            S.POST_PROCESSING,
            progress=100,
            schedule_type=ScheduleType.RECURRING,
            recurring_pattern="0 * * * *",
            last_run_at=datetime(2024, 1, 1, 0, 0, tzinfo=UTC),
        )
        changes = finish_changes(deployment, S.COMPLETED, datetime(2024, 1, 1, 5, 0, tzinfo=UTC))
        assert changes["next_run_at"] == datetime(2024, 1, 1, 1, 0, tzinfo=UTC)

    def test_illegal_outcome_raises(self):
        with pytest.raises(InvalidTransition):
            finish_changes(_deployment(S.PENDING), S.FAILED, NOW)


class TestSignalFailedChanges:
    def test_one_shot_fails(self):
        changes = signal_failed_changes(_deployment(S.PENDING), NOW, "Execution signal failed: down")
        assert changes == {
            "status": S.FAILED,
            "completed_at": NOW,
            "error_message": "Execution signal failed: down",
            "updated_at": NOW,
        }

    def test_recurring_returns_to_scheduled(self):
        deployment = _deployment(
            S.PENDING,
            schedule_type=ScheduleType.RECURRING,
            recurring_pattern="0 * * * *",
            last_run_at=datetime(2024, 1, 1, 1, 0, tzinfo=UTC),
            next_run_at=datetime(2024, 1, 1, 2, 0, tzinfo=UTC),
        )
        changes = signal_failed_changes(deployment, NOW, "down")
        assert changes["status"] == S.SCHEDULED
        assert "next_run_at" not in changes
        assert "completed_at" not in changes

    @pytest.mark.parametrize("status", [S.SCHEDULED, S.DEPLOYING, S.CANCELLED])
    def test_only_from_pending(self, status):
        with pytest.raises(InvalidTransition):
            signal_failed_changes(_deployment(status), NOW, "down")


class TestTaskRuns:
    def test_pending_to_running(self):
        check_task_transition(_task(TaskRunStatus.PENDING), TaskRunStatus.RUNNING)

    def test_pending_cannot_complete(self):
        with pytest.raises(InvalidTransition):
            check_task_transition(_task(TaskRunStatus.PENDING), TaskRunStatus.COMPLETED)

    def test_complete_requires_full_progress(self):
        with pytest.raises(InvalidTransition, match="progress 100"):
            check_task_transition(_task(TaskRunStatus.RUNNING, 60), TaskRunStatus.COMPLETED)

    def test_progress_only_while_running(self):
        with pytest.raises(InvalidTransition):
            check_task_progress(_task(TaskRunStatus.PENDING), 10)

    def test_progress_never_backwards(self):
        with pytest.raises(InvalidTransition):
            check_task_progress(_task(TaskRunStatus.RUNNING, 50), 40)
