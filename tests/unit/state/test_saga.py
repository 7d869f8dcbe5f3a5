"""
Tests for the saga coordinator.

A PaperBank stands in for a real participant; the executor is a plain
function so ordering and rollback can be observed directly.
"""
import pytest

from delta_neutral.models.commands import (
    AchieveSafeCollateralRatio,
    DepositUusdBalanceToLending,
    PairUusdWithMirrorAssetAndStake,
    RebalanceAndReinvest,
    TransferUusd,
)
from delta_neutral.state.saga import Response, SagaCoordinator
from delta_neutral.venues.base import Participant
from delta_neutral.venues.simulated import PaperBank


class RecordingParticipant(Participant):
    """Remembers the order in which it was restored."""

    def __init__(self, name, restored):
        self.name = name
        self.value = 0
        self.restored = restored

    def snapshot(self):
        return self.value

    def restore(self, snapshot):
        self.value = snapshot
        self.restored.append(self.name)


class TestResponse:
    def test_builders_chain(self):
        response = (
            Response()
            .add_command(RebalanceAndReinvest())
            .add_commands([AchieveSafeCollateralRatio()])
            .add_attribute("dnr_skip", "old_price")
        )
        assert response.commands == [RebalanceAndReinvest(), AchieveSafeCollateralRatio()]
        assert response.attributes == {"dnr_skip": "old_price"}


class TestSagaCoordinator:
    """Tests for SagaCoordinator.run."""

    @pytest.fixture
    def bank(self):
        bank = PaperBank()
        bank.mint("alice", "uusd", 1_000)
        return bank

    def _transfer_executor(self, bank, executed):
        def execute(command):
            executed.append(command.name)
            if isinstance(command, TransferUusd):
                bank.transfer(command.sender, command.recipient, "uusd", command.amount)
            return None
        return execute

    def test_follow_ups_run_depth_first(self, bank):
        """A step's follow-ups run before that step's next sibling."""
        executed = []

        def execute(command):
            executed.append(command.name)
            if isinstance(command, RebalanceAndReinvest):
                return Response(
                    commands=[AchieveSafeCollateralRatio(), PairUusdWithMirrorAssetAndStake()],
                    attributes={"collateral_action": "none"},
                )
            return None

        saga = SagaCoordinator([bank], execute)
        result = saga.run(Response(commands=[RebalanceAndReinvest(), DepositUusdBalanceToLending()]))

        assert executed == [
            "RebalanceAndReinvest",
            "AchieveSafeCollateralRatio",
            "PairUusdWithMirrorAssetAndStake",
            "DepositUusdBalanceToLending",
        ]
        assert result.steps == executed
        assert result.attributes == {"collateral_action": "none"}

    def test_commit_hook_runs_on_success(self, bank):
        committed = []
        executed = []
        saga = SagaCoordinator([bank], self._transfer_executor(bank, executed))

        saga.run(
            Response(commands=[TransferUusd(sender="alice", recipient="bob", amount=400)]),
            on_commit=lambda: committed.append(True),
        )

        assert committed == [True]
        assert bank.balance("alice", "uusd") == 600
        assert bank.balance("bob", "uusd") == 400

    def test_failure_restores_every_participant(self, bank):
        """The second transfer overdraws, so the first one is undone too."""
        executed = []
        committed = []
        saga = SagaCoordinator([bank], self._transfer_executor(bank, executed))

        with pytest.raises(Exception) as exc_info:
            saga.run(
                Response(commands=[
                    TransferUusd(sender="alice", recipient="bob", amount=400),
                    TransferUusd(sender="alice", recipient="bob", amount=700),
                ]),
                on_commit=lambda: committed.append(True),
            )

        assert "alice" in str(exc_info.value)
        assert executed == ["TransferUusd", "TransferUusd"]
        assert committed == []
        assert bank.balance("alice", "uusd") == 1_000
        assert bank.balance("bob", "uusd") == 0

    def test_restores_in_reverse_order(self):
        restored = []
        first = RecordingParticipant("first", restored)
        second = RecordingParticipant("second", restored)

        def execute(command):
            first.value, second.value = 1, 2
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            SagaCoordinator([first, second], execute).run(Response(commands=[RebalanceAndReinvest()]))

        assert restored == ["second", "first"]
        assert (first.value, second.value) == (0, 0)

    def test_failing_commit_hook_rolls_back(self, bank):
        executed = []
        saga = SagaCoordinator([bank], self._transfer_executor(bank, executed))

        def fail():
            raise IOError("disk full")

        with pytest.raises(IOError):
            saga.run(
                Response(commands=[TransferUusd(sender="alice", recipient="bob", amount=400)]),
                on_commit=fail,
            )
        assert bank.balance("alice", "uusd") == 1_000

    def test_empty_saga_commits(self, bank):
        committed = []
        result = SagaCoordinator([bank], lambda command: None).run(
            Response(), on_commit=lambda: committed.append(True),
        )
        assert result.steps == []
        assert committed == [True]
