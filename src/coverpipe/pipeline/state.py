"""Pipeline state machine.

Idle → Running → Aggregating → Serializing → (Uploading →) Done
Failed is reachable from every non-terminal state.
"""

from coverpipe.core.errors import InternalError
from coverpipe.core.logging import get_logger
from coverpipe.pipeline.models import PipelineState

log = get_logger(__name__)

_FORWARD: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.IDLE: frozenset({PipelineState.RUNNING}),
    PipelineState.RUNNING: frozenset({PipelineState.AGGREGATING}),
    PipelineState.AGGREGATING: frozenset({PipelineState.SERIALIZING}),
    # Done directly when upload is disabled or unconfigured
    PipelineState.SERIALIZING: frozenset({PipelineState.UPLOADING, PipelineState.DONE}),
    PipelineState.UPLOADING: frozenset({PipelineState.DONE}),
    PipelineState.DONE: frozenset(),
    PipelineState.FAILED: frozenset(),
}


class PipelineStateMachine:
    """Tracks and validates the pipeline's phase."""

    def __init__(self) -> None:
        self._state = PipelineState.IDLE
        self._history: list[PipelineState] = [PipelineState.IDLE]
        self.reason: str | None = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def history(self) -> list[PipelineState]:
        return list(self._history)

    def can_transition(self, to: PipelineState) -> bool:
        if to is PipelineState.FAILED:
            return not self._state.is_terminal
        return to in _FORWARD[self._state]

    def transition(self, to: PipelineState) -> None:
        """Move to the next phase.

        Raises:
            InternalError: If the transition is not allowed.
        """
        if not self.can_transition(to):
            raise InternalError.unexpected(
                f"illegal pipeline transition {self._state.value} -> {to.value}",
                from_state=self._state.value,
                to_state=to.value,
            )
        log.debug("pipeline_state", from_state=self._state.value, to_state=to.value)
        self._state = to
        self._history.append(to)

    def fail(self, reason: str) -> None:
        """Enter Failed with a reason."""
        self.transition(PipelineState.FAILED)
        self.reason = reason
