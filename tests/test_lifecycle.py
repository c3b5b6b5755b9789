"""Tests for the session state machine and record invariants."""

from __future__ import annotations

import pytest

from grounds.engine.lifecycle import VALID_TRANSITIONS, validate_transition
from grounds.engine.models import LabSession, SessionStatus, format_window


# ── Transitions ──


class TestTransitions:
    def test_happy_path_cycle(self):
        path = [
            SessionStatus.STOPPED,
            SessionStatus.STARTING,
            SessionStatus.RUNNING,
            SessionStatus.STOPPING,
            SessionStatus.STOPPED,
        ]
        for current, target in zip(path, path[1:]):
            validate_transition(current, target)

    def test_rollback_edges_allowed(self):
        validate_transition(SessionStatus.STARTING, SessionStatus.STOPPED)
        validate_transition(SessionStatus.STOPPING, SessionStatus.RUNNING)

    @pytest.mark.parametrize("status", list(SessionStatus))
    def test_no_self_loops(self, status):
        with pytest.raises(ValueError):
            validate_transition(status, status)

    def test_running_cannot_jump_to_stopped(self):
        with pytest.raises(ValueError, match="running -> stopped"):
            validate_transition(SessionStatus.RUNNING, SessionStatus.STOPPED)

    def test_stopped_cannot_skip_starting(self):
        with pytest.raises(ValueError, match="Allowed from stopped: starting"):
            validate_transition(SessionStatus.STOPPED, SessionStatus.RUNNING)

    def test_every_state_has_an_entry(self):
        assert set(VALID_TRANSITIONS) == set(SessionStatus)


# ── Record invariants ──


class TestLabSessionValidation:
    def test_starting_has_no_container(self):
        LabSession(1, SessionStatus.STARTING).validate()
        with pytest.raises(ValueError, match="must not carry a container"):
            LabSession(1, SessionStatus.STARTING, container_identity="c-1").validate()

    def test_running_needs_all_fields(self):
        LabSession(
            1, SessionStatus.RUNNING,
            container_identity="c-1", leased_address="10.0.0.5", time_remaining="4h 0m",
        ).validate()
        with pytest.raises(ValueError, match="requires leased_address"):
            LabSession(
                1, SessionStatus.RUNNING, container_identity="c-1", time_remaining="4h 0m",
            ).validate()

    def test_stopping_keeps_container_but_not_address(self):
        LabSession(1, SessionStatus.STOPPING, container_identity="c-1").validate()
        with pytest.raises(ValueError, match="cannot have leased_address"):
            LabSession(
                1, SessionStatus.STOPPING,
                container_identity="c-1", leased_address="10.0.0.5",
            ).validate()

    def test_stopped_is_never_a_record(self):
        with pytest.raises(ValueError, match="not persisted"):
            LabSession(1, SessionStatus.STOPPED).validate()

    def test_dict_omits_absent_fields(self):
        data = LabSession(7, SessionStatus.STARTING, owner="0xabc").to_dict()
        assert data["status"] == "starting"
        assert data["owner"] == "0xabc"
        assert "container_identity" not in data
        assert "leased_address" not in data
        assert LabSession.from_dict(data) == LabSession(
            7, SessionStatus.STARTING, owner="0xabc", updated_at=data["updated_at"]
        )

    def test_from_dict_rejects_unknown_status(self):
        with pytest.raises(ValueError):
            LabSession.from_dict({"environment_id": 1, "status": "paused"})


class TestFormatWindow:
    @pytest.mark.parametrize(
        "minutes, expected",
        [(240, "4h 0m"), (90, "1h 30m"), (45, "0h 45m"), (-5, "0h 0m")],
    )
    def test_format(self, minutes, expected):
        assert format_window(minutes) == expected
