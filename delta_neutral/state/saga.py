"""
Saga coordinator.

Runs one invocation's command chain as an all-or-nothing unit. Before the
first command every participant is snapshotted; commands then execute
depth-first, so the follow-up commands a step returns run before that
step's next sibling and observe its effects. If any step raises, every
participant is restored in reverse order and the original exception is
re-raised unchanged. On success the commit hook runs (persisting the
position record) before the saga is reported committed.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from delta_neutral.models.commands import Command
from delta_neutral.utils.logger import get_logger
from delta_neutral.venues.base import Participant

logger = get_logger(__name__)


@dataclass
class Response:
    """Commands a step wants run next, plus attributes to report."""

    commands: List[Command] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def add_command(self, command: Command) -> "Response":
        self.commands.append(command)
        return self

    def add_commands(self, commands: Sequence[Command]) -> "Response":
        self.commands.extend(commands)
        return self

    def add_attribute(self, key: str, value: Any) -> "Response":
        self.attributes[key] = value
        return self


@dataclass
class SagaResult:
    """What a committed saga did."""

    attributes: Dict[str, Any] = field(default_factory=dict)
    steps: List[str] = field(default_factory=list)


Executor = Callable[[Command], Optional[Response]]


class SagaCoordinator:
    """Executes command chains with compensating rollback."""

    def __init__(self, participants: Sequence[Participant], executor: Executor):
        self.participants = list(participants)
        self.executor = executor

    def run(
        self,
        initial: Response,
        on_commit: Optional[Callable[[], None]] = None,
        name: str = "invocation",
    ) -> SagaResult:
        """
        Execute `initial.commands` and everything they queue.

        Raises:
            Exception: Whatever a step raised, after every participant is restored
        """
        snapshots = [participant.snapshot() for participant in self.participants]
        result = SagaResult(attributes=dict(initial.attributes))
        pending: List[Command] = list(reversed(initial.commands))

        try:
            while pending:
                command = pending.pop()
                result.steps.append(command.name)
                follow_up = self.executor(command)
                if follow_up is None:
                    continue
                result.attributes.update(follow_up.attributes)
                pending.extend(reversed(follow_up.commands))

            if on_commit is not None:
                on_commit()
        except Exception as e:
            for participant, snapshot in reversed(list(zip(self.participants, snapshots))):
                participant.restore(snapshot)
            logger.warning(
                "saga_rolled_back",
                saga=name,
                error=str(e),
                error_type=type(e).__name__,
                steps=result.steps,
            )
            raise

        logger.info(
            "saga_committed",
            saga=name,
            steps=result.steps,
            attributes={key: str(value) for key, value in result.attributes.items()},
        )
        return result
