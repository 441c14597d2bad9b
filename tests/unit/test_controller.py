"""Tests for the iteration controller."""

import pytest

from blueprints.core.controller import (
    AbortReason,
    IterationController,
    LoopConfig,
    LoopState,
)
from blueprints.core.errors import ManifestError, ProtocolError
from blueprints.core.protocol import Complete, Continue, Error, make_defects

WORK = Continue(defects=make_defects(["add a vector for S-002"]))


def scripted(*signals):
    """A pass that replays signals in order and records the defects it was handed."""
    queue = list(signals)
    seen = []

    def run(defects):
        seen.append(defects)
        return queue.pop(0)

    run.seen = seen
    return run


def no_sleep(seconds: float) -> None:
    pass


# =============================================================================
# Transition table
# =============================================================================


class TestTransitions:
    def test_review_complete_converges(self) -> None:
        controller = IterationController()
        assert controller.feed(Complete()) == LoopState.CONVERGED
        assert controller.outcome().converged

    def test_review_continue_moves_to_building(self) -> None:
        controller = IterationController()
        assert controller.feed(WORK) == LoopState.BUILDING
        assert controller.defects == WORK.defects

    def test_build_complete_returns_to_review(self) -> None:
        controller = IterationController()
        controller.feed(WORK)
        assert controller.feed(Complete()) == LoopState.REVIEWING

    def test_error_aborts_from_any_state(self) -> None:
        controller = IterationController()
        controller.feed(WORK)
        assert controller.feed(Error(reason="tool crashed")) == LoopState.ABORTED
        outcome = controller.outcome()
        assert outcome.reason == AbortReason.ERROR
        assert outcome.message == "tool crashed"

    def test_reviewer_continue_without_defects_aborts(self) -> None:
        controller = IterationController()
        assert controller.feed(Continue()) == LoopState.ABORTED
        assert controller.reason == AbortReason.ERROR

    def test_terminal_state_rejects_more_signals(self) -> None:
        controller = IterationController()
        controller.feed(Complete())
        with pytest.raises(ProtocolError):
            controller.feed(Complete())


class TestBudgets:
    def test_build_bound_aborts_on_second_continuation(self) -> None:
        controller = IterationController(LoopConfig(max_build_iters=2))
        controller.feed(WORK)

        assert controller.feed(WORK) == LoopState.BUILDING
        assert controller.feed(WORK) == LoopState.ABORTED
        outcome = controller.outcome()
        assert outcome.reason == AbortReason.BUDGET_EXCEEDED
        assert outcome.defects == WORK.defects

        with pytest.raises(ProtocolError):
            controller.feed(WORK)

    def test_review_bound(self) -> None:
        controller = IterationController(LoopConfig(max_review_iters=1))
        controller.feed(WORK)
        assert controller.feed(Complete()) == LoopState.ABORTED
        assert controller.reason == AbortReason.BUDGET_EXCEEDED

    def test_build_counter_resets_per_phase(self) -> None:
        controller = IterationController(LoopConfig(max_build_iters=2))
        controller.feed(WORK)
        controller.feed(WORK)
        controller.feed(Complete())
        controller.feed(WORK)
        assert controller.builds == 0
        assert controller.feed(WORK) == LoopState.BUILDING

    def test_build_continuation_updates_defects(self) -> None:
        controller = IterationController()
        controller.feed(WORK)
        newer = Continue(defects=make_defects(["rename DP-004"]))
        controller.feed(newer)
        assert controller.defects == newer.defects


class TestGates:
    def test_gate_withholds_completion(self) -> None:
        controller = IterationController(gates=[lambda: ["DP-001 is unchecked"]])
        assert controller.feed(Complete()) == LoopState.BUILDING
        assert [d.text for d in controller.defects] == ["DP-001 is unchecked"]

    def test_passing_gate_lets_completion_through(self) -> None:
        controller = IterationController(gates=[lambda: []])
        assert controller.feed(Complete()) == LoopState.CONVERGED


class TestRun:
    def test_run_until_converged(self) -> None:
        review = scripted(WORK, Complete())
        build = scripted(Complete())
        sleeps = []
        controller = IterationController(LoopConfig(loop_sleep=0.5), sleep=sleeps.append)

        outcome = controller.run(review, build)

        assert outcome.converged
        assert outcome.reviews == 2
        assert build.seen == [WORK.defects]
        assert sleeps == [0.5, 0.5]

    def test_run_until_budget(self) -> None:
        review = scripted(WORK)
        build = scripted(WORK, WORK, WORK)
        controller = IterationController(LoopConfig(max_build_iters=2), sleep=no_sleep)

        outcome = controller.run(review, build)

        assert outcome.state == LoopState.ABORTED
        assert outcome.reason == AbortReason.BUDGET_EXCEEDED
        assert outcome.builds == 2


class TestLoopConfig:
    def test_defaults(self) -> None:
        config = LoopConfig()
        assert (config.max_review_iters, config.max_build_iters, config.loop_sleep) == (100, 50, 0.2)

    def test_from_env(self) -> None:
        env = {"MAX_REVIEWER_ITERS": "7", "MAX_BUILDER_ITERS": "3", "LOOP_SLEEP_SECS": "0"}
        config = LoopConfig.from_env(env)
        assert (config.max_review_iters, config.max_build_iters, config.loop_sleep) == (7, 3, 0.0)

    def test_from_env_keeps_base_for_unset(self) -> None:
        config = LoopConfig.from_env({}, base=LoopConfig(max_review_iters=9))
        assert config.max_review_iters == 9

    def test_negative_sleep_rejected(self) -> None:
        with pytest.raises(ManifestError):
            LoopConfig.from_env({"LOOP_SLEEP_SECS": "-1"})

    def test_non_numeric_rejected(self) -> None:
        with pytest.raises(ManifestError):
            LoopConfig.from_env({"MAX_BUILDER_ITERS": "lots"})

    def test_zero_bound_rejected(self) -> None:
        with pytest.raises(ManifestError):
            LoopConfig(max_review_iters=0)
