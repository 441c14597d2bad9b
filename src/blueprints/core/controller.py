"""
Bounded review/build iteration controller.

The controller alternates a reviewing pass and a building pass. Each
pass hands back a protocol ``Signal``; the controller moves through
Reviewing, Building, Converged and Aborted accordingly::

    Reviewing + Complete  -> Converged
    Reviewing + Continue  -> Building (defects carried forward)
    Building  + Complete  -> Reviewing (never trust one pass's sign-off)
    Building  + Continue  -> Building
    any       + Error     -> Aborted

Reviews and builds are budgeted separately. When another pass of a state
would exceed its bound, the run aborts with ``BUDGET_EXCEEDED`` and the
defects still unresolved at that point.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum

from .errors import ManifestError, ProtocolError
from .protocol import (
    Complete,
    Continue,
    Defect,
    Error,
    Signal,
    make_defects,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_REVIEW_ITERS = 100
DEFAULT_MAX_BUILD_ITERS = 50
DEFAULT_LOOP_SLEEP = 0.2

ENV_MAX_REVIEW_ITERS = "MAX_REVIEWER_ITERS"
ENV_MAX_BUILD_ITERS = "MAX_BUILDER_ITERS"
ENV_LOOP_SLEEP = "LOOP_SLEEP_SECS"


class LoopState(StrEnum):
    REVIEWING = "reviewing"
    BUILDING = "building"
    CONVERGED = "converged"
    ABORTED = "aborted"


class AbortReason(StrEnum):
    ERROR = "error"
    BUDGET_EXCEEDED = "budget-exceeded"


@dataclass
class LoopConfig:
    """Iteration budgets and the pause between passes (seconds)."""

    max_review_iters: int = DEFAULT_MAX_REVIEW_ITERS
    max_build_iters: int = DEFAULT_MAX_BUILD_ITERS
    loop_sleep: float = DEFAULT_LOOP_SLEEP

    def __post_init__(self) -> None:
        if self.max_review_iters < 1 or self.max_build_iters < 1:
            raise ManifestError("Iteration bounds must be at least 1")
        if self.loop_sleep < 0:
            raise ManifestError(f"{ENV_LOOP_SLEEP} must be non-negative")

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        base: "LoopConfig | None" = None,
    ) -> "LoopConfig":
        """
        Overlay ``MAX_REVIEWER_ITERS``, ``MAX_BUILDER_ITERS`` and
        ``LOOP_SLEEP_SECS`` from the environment onto ``base``.

        Raises:
            ManifestError: If a variable does not parse or is out of range
        """
        env = os.environ if env is None else env
        base = base or cls()

        def read(name: str, convert: Callable[[str], float], default: float) -> float:
            raw = env.get(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return convert(raw.strip())
            except ValueError:
                raise ManifestError(f"{name} must be a number, got '{raw}'") from None

        return cls(
            max_review_iters=int(read(ENV_MAX_REVIEW_ITERS, int, base.max_review_iters)),
            max_build_iters=int(read(ENV_MAX_BUILD_ITERS, int, base.max_build_iters)),
            loop_sleep=read(ENV_LOOP_SLEEP, float, base.loop_sleep),
        )


# A gate returns outstanding work; any entry turns a Complete into a Continue
CompletionGate = Callable[[], list[str]]

# A pass receives the defects to work on and returns the signal it emitted
Pass = Callable[[tuple[Defect, ...]], Signal]


@dataclass
class LoopOutcome:
    """
    How a run ended.

    Attributes:
        state: ``CONVERGED`` or ``ABORTED``
        reason: Abort reason, None when converged
        message: Human-readable summary
        defects: Defects unresolved when the run ended
        reviews: Review passes run
        builds: Build passes run in the last build phase
    """

    state: LoopState
    reason: AbortReason | None = None
    message: str = ""
    defects: tuple[Defect, ...] = field(default=())
    reviews: int = 0
    builds: int = 0

    @property
    def converged(self) -> bool:
        return self.state == LoopState.CONVERGED


class IterationController:
    """
    State machine driving review/build passes to convergence.

    Args:
        config: Iteration budgets
        gates: Checks consulted whenever a pass reports completion
        sleep: Called with ``config.loop_sleep`` between passes
    """

    def __init__(
        self,
        config: LoopConfig | None = None,
        gates: list[CompletionGate] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or LoopConfig()
        self.gates = list(gates or [])
        self.sleep = sleep
        self.state = LoopState.REVIEWING
        self.reviews = 0
        self.builds = 0
        self.defects: tuple[Defect, ...] = ()
        self.reason: AbortReason | None = None
        self.message = ""

    @property
    def terminal(self) -> bool:
        return self.state in (LoopState.CONVERGED, LoopState.ABORTED)

    def _abort(self, reason: AbortReason, message: str) -> LoopState:
        logger.warning("Loop aborted (%s): %s", reason, message)
        self.state = LoopState.ABORTED
        self.reason = reason
        self.message = message
        return self.state

    def _apply_gates(self, signal: Signal) -> Signal:
        if not isinstance(signal, Complete):
            return signal
        outstanding = [entry for gate in self.gates for entry in gate()]
        if outstanding:
            logger.info("Completion withheld: %d outstanding item(s)", len(outstanding))
            return Continue(defects=make_defects(outstanding))
        return signal

    def feed(self, signal: Signal) -> LoopState:
        """
        Advance the machine by one pass result.

        Raises:
            ProtocolError: If the machine is already terminal
        """
        if self.terminal:
            raise ProtocolError(f"Loop is already {self.state}; no further passes expected")

        if self.state == LoopState.REVIEWING:
            self.reviews += 1
        else:
            self.builds += 1

        signal = self._apply_gates(signal)

        if isinstance(signal, Error):
            return self._abort(AbortReason.ERROR, signal.reason)

        if self.state == LoopState.REVIEWING:
            if isinstance(signal, Complete):
                logger.info("Reviewer sign-off after %d review(s)", self.reviews)
                self.state = LoopState.CONVERGED
                self.defects = ()
                self.message = "converged"
                return self.state
            if not signal.defects:
                return self._abort(
                    AbortReason.ERROR, "reviewer emitted no actionable feedback"
                )
            self.defects = signal.defects
            self.state = LoopState.BUILDING
            self.builds = 0
            logger.info("Review %d: %d defect(s) to build", self.reviews, len(self.defects))
            return self.state

        # Building
        if isinstance(signal, Complete):
            if self.reviews >= self.config.max_review_iters:
                return self._abort(
                    AbortReason.BUDGET_EXCEEDED,
                    f"review loop exceeded {self.config.max_review_iters} iteration(s)",
                )
            self.state = LoopState.REVIEWING
            return self.state
        if signal.defects:
            self.defects = signal.defects
        if self.builds >= self.config.max_build_iters:
            return self._abort(
                AbortReason.BUDGET_EXCEEDED,
                f"build loop exceeded {self.config.max_build_iters} iteration(s)",
            )
        return self.state

    def step(self, review_pass: Pass, build_pass: Pass) -> LoopState:
        """Run the pass for the current state and feed its signal."""
        if self.state == LoopState.REVIEWING:
            logger.info("Running review pass %d", self.reviews + 1)
            signal = review_pass(())
        else:
            logger.info("Running build pass %d", self.builds + 1)
            signal = build_pass(self.defects)
        return self.feed(signal)

    def run(self, review_pass: Pass, build_pass: Pass) -> LoopOutcome:
        """Alternate passes until the machine is terminal."""
        while not self.terminal:
            self.step(review_pass, build_pass)
            if not self.terminal and self.config.loop_sleep:
                self.sleep(self.config.loop_sleep)
        return self.outcome()

    def outcome(self) -> LoopOutcome:
        return LoopOutcome(
            state=self.state,
            reason=self.reason,
            message=self.message,
            defects=self.defects,
            reviews=self.reviews,
            builds=self.builds,
        )
