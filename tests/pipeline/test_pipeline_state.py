"""Tests for the pipeline state machine."""

import pytest

from coverpipe.core.errors import InternalError
from coverpipe.pipeline import PipelineState, PipelineStateMachine


class TestPipelineStateMachine:
    """Forward-only phases plus Failed from anywhere."""

    def test_starts_idle(self) -> None:
        machine = PipelineStateMachine()
        assert machine.state is PipelineState.IDLE
        assert machine.reason is None

    def test_upload_path(self) -> None:
        machine = PipelineStateMachine()
        for state in (
            PipelineState.RUNNING,
            PipelineState.AGGREGATING,
            PipelineState.SERIALIZING,
            PipelineState.UPLOADING,
            PipelineState.DONE,
        ):
            machine.transition(state)

        assert machine.state.is_terminal
        assert machine.history[-2:] == [PipelineState.UPLOADING, PipelineState.DONE]

    @pytest.mark.parametrize(
        "state",
        [PipelineState.IDLE, PipelineState.RUNNING, PipelineState.SERIALIZING],
    )
    def test_fail_from_non_terminal(self, state: PipelineState) -> None:
        machine = PipelineStateMachine()
        path = [PipelineState.RUNNING, PipelineState.AGGREGATING, PipelineState.SERIALIZING]
        for step in path[: path.index(state) + 1] if state in path else []:
            machine.transition(step)

        machine.fail("boom")

        assert machine.state is PipelineState.FAILED
        assert machine.reason == "boom"

    def test_no_skipping_phases(self) -> None:
        machine = PipelineStateMachine()
        with pytest.raises(InternalError):
            machine.transition(PipelineState.SERIALIZING)

    def test_no_going_back(self) -> None:
        machine = PipelineStateMachine()
        machine.transition(PipelineState.RUNNING)
        with pytest.raises(InternalError):
            machine.transition(PipelineState.IDLE)

    def test_terminal_states_are_final(self) -> None:
        machine = PipelineStateMachine()
        machine.fail("first")

        assert not machine.can_transition(PipelineState.FAILED)
        with pytest.raises(InternalError):
            machine.fail("second")
        assert machine.reason == "first"
