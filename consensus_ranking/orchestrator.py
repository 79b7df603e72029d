"""
Orchestrator for simulated rating studies.

Runs every rater's session against a RatingService. Each session runs on its
own worker thread; the service serializes work per rater, so sessions never
block each other.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed, Future
from dataclasses import dataclass, field
from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from loguru import Logger

from .exceptions import ExhaustionError, ValidationError
from .interfaces import Rater
from .logging_config import get_logger
from .service import RatingService

# Give up on a session after this many consecutive failed screens
MAX_CONSECUTIVE_FAILURES = 3


@dataclass
class RunConfig:
    """Configuration for a study run."""

    max_workers: int = 4  # thread pool size
    max_screens_per_rater: int | None = None  # None: use the service's screen ceiling

    def __post_init__(self):
        """Validate configuration."""
        if self.max_workers <= 0:
            raise ValueError(f"max_workers must be positive, got {self.max_workers}")
        if self.max_screens_per_rater is not None and self.max_screens_per_rater <= 0:
            raise ValueError(f"max_screens_per_rater must be positive, got {self.max_screens_per_rater}")


@dataclass
class SessionResult:
    """How one rater's session ended."""

    rater_id: str
    screens_completed: int
    stop_reason: str
    failed_screens: int = 0
    aborted: bool = False


@dataclass
class RunSummary:
    sessions: list[SessionResult] = field(default_factory=list)

    @property
    def total_screens(self) -> int:
        return sum(session.screens_completed for session in self.sessions)

    @property
    def aborted_sessions(self) -> list[SessionResult]:
        return [session for session in self.sessions if session.aborted]


class Orchestrator:
    """Runs rater sessions in parallel against one service."""

    def __init__(self, service: RatingService, raters: Sequence[Rater], config: RunConfig | None = None):
        """Initialize orchestrator with the service and the raters to run."""
        rater_ids = [rater.rater_id for rater in raters]
        if len(set(rater_ids)) != len(rater_ids):
            raise ValueError(f"Rater ids must be unique: {rater_ids}")

        self.service: RatingService = service
        self.raters: list[Rater] = list(raters)
        self.config: RunConfig = config or RunConfig()

        # Setup logger
        self.logger: Logger = get_logger("orchestrator")

    @property
    def screen_limit(self) -> int:
        if self.config.max_screens_per_rater is not None:
            return self.config.max_screens_per_rater
        return self.service.config.max_screens_per_rater

    def run(self) -> RunSummary:
        """Run every rater's session to completion."""
        self.logger.info(f"Starting study with {len(self.raters)} raters, config: {self.config}")
        print(f"Starting study with {len(self.raters)} raters (limit {self.screen_limit} screens each)")

        summary = RunSummary()
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures: dict[Future[SessionResult], str] = {
                executor.submit(self._run_session, rater): rater.rater_id for rater in self.raters
            }

            for future in as_completed(futures):
                rater_id = futures[future]
                result = future.result()
                summary.sessions.append(result)
                self.logger.info(
                    f"Session for {rater_id} finished after {result.screens_completed} screens: {result.stop_reason}"
                )
                print(
                    f"[{len(summary.sessions)}/{len(self.raters)}] {rater_id}: "
                    f"{result.screens_completed} screens ({result.stop_reason})"
                )

        summary.sessions.sort(key=lambda session: session.rater_id)
        self.logger.info(
            f"Study complete: {summary.total_screens} screens, {len(summary.aborted_sessions)} aborted sessions"
        )
        print(f"Study complete: {summary.total_screens} screens answered")
        return summary

    def _run_session(self, rater: Rater) -> SessionResult:
        """
        Loop next_screen -> choose -> submit until the stopping rules say stop.

        Runs on a worker thread. A rater error costs one screen; after
        MAX_CONSECUTIVE_FAILURES in a row the session is abandoned.
        """
        completed = 0
        failed = 0
        consecutive_failures = 0
        reason = "Screen limit reached"

        while completed < self.screen_limit:
            try:
                screen = self.service.next_screen(rater.rater_id)
            except ExhaustionError as e:
                self.logger.warning(f"No screen available for {rater.rater_id}: {e}")
                return SessionResult(rater.rater_id, completed, str(e), failed)

            try:
                choice = rater.choose(list(screen.item_ids))
                result = self.service.submit_decision(
                    rater.rater_id, screen.screen_id, choice.top3, choice.loser
                )
            except (ValidationError, ValueError, RuntimeError) as e:
                failed += 1
                consecutive_failures += 1
                self.logger.error(f"Screen {screen.screen_id} failed for {rater.rater_id}: {e}")
                if consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
                    return SessionResult(
                        rater.rater_id,
                        completed,
                        f"Aborted after {consecutive_failures} consecutive failures",
                        failed,
                        aborted=True,
                    )
                continue

            consecutive_failures = 0
            completed = result.screens_completed
            if result.stop.should_stop:
                reason = result.stop.reason
                break

        return SessionResult(rater.rater_id, completed, reason, failed)
