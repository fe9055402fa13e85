"""
Scoring worker.

There is no image model behind this: after an artificial delay the worker
draws six sub-scores from the injected random source, folds them into a
weighted overall score and writes a verdict back to the record.

Work is handed over as a ``ScoringTask`` message to a thread pool. The pool's
queue is unbounded and there is no retry: if a task fails before writing,
the record stays PENDING and the failure is only visible in the logs and the
``scoring.failed`` counter.
"""

import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from veritas.config import settings
from veritas.models.analysis import Verdict
from veritas.services.analysis_service import SUB_SCORE_KEYS, patch_result
from veritas.utils.logging_config import StructuredLogger, log_execution_time, metrics

logger = StructuredLogger(__name__)

# Weight of each sub-score in the overall score (sums to 1.0)
WEIGHTS: Dict[str, float] = {
    "artifact_score": 0.20,
    "pattern_consistency": 0.20,
    "noise_analysis": 0.15,
    "color_distribution": 0.15,
    "edge_coherence": 0.15,
    "metadata_score": 0.15,
}

AI_THRESHOLD = 50.0
CONFIDENCE_FLOOR = 85.0
CONFIDENCE_SPAN = 14.97
CONFIDENCE_CAP = 99.97


@dataclass
class ScoringResult:
    verdict: Verdict
    confidence: float
    sub_scores: Dict[str, float]
    overall: float


@dataclass
class ScoringTask:
    """Message handed to the pool: which record to score."""
    analysis_id: str
    submitted_at: datetime = field(default_factory=datetime.utcnow)


def draw_sub_scores(rng: random.Random) -> Dict[str, float]:
    """Six independent draws in [0, 100), in WEIGHTS order."""
    return {key: rng.random() * 100 for key in SUB_SCORE_KEYS}


def overall_score(sub_scores: Dict[str, float]) -> float:
    return sum(sub_scores[key] * weight for key, weight in WEIGHTS.items())


def decide_verdict(overall: float) -> Verdict:
    # Strict comparison: exactly 50 is AUTHENTIC
    return Verdict.AI_GENERATED if overall > AI_THRESHOLD else Verdict.AUTHENTIC


def draw_confidence(rng: random.Random) -> float:
    return min(CONFIDENCE_CAP, CONFIDENCE_FLOOR + rng.random() * CONFIDENCE_SPAN)


def evaluate(sub_scores: Dict[str, float], rng: random.Random) -> ScoringResult:
    overall = overall_score(sub_scores)
    return ScoringResult(
        verdict=decide_verdict(overall),
        confidence=draw_confidence(rng),
        sub_scores=dict(sub_scores),
        overall=overall,
    )


@log_execution_time("veritas.scoring")
def score_analysis(
    analysis_id: str,
    session_factory: Callable[[], Session],
    rng: random.Random,
    sleep: Callable[[float], None] = time.sleep,
    delay_range: Optional[Tuple[float, float]] = None,
) -> ScoringResult:
    """
    Wait, score and patch one record.

    Raises whatever ``patch_result`` raises (``NotFoundError`` for a deleted
    record); nothing is retried.
    """
    low, high = delay_range or settings.scoring_delay_range
    sleep(low + rng.random() * (high - low))

    result = evaluate(draw_sub_scores(rng), rng)

    db = session_factory()
    try:
        patch_result(db, analysis_id, result.verdict, result.confidence, result.sub_scores)
    finally:
        db.close()

    metrics.increment(f"scoring.verdict.{result.verdict.value.lower()}")
    logger.info(
        "Analysis scored",
        analysis_id=analysis_id,
        verdict=result.verdict.value,
        confidence=round(result.confidence, 2),
        overall=round(result.overall, 2),
    )
    return result


class ScoringQueue:
    """
    Thread pool that runs scoring tasks decoupled from the request that
    submitted them.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_workers: Optional[int] = None,
        delay_range: Optional[Tuple[float, float]] = None,
    ):
        self.session_factory = session_factory
        self.rng = rng or random.Random()
        self.sleep = sleep
        self.max_workers = max_workers or settings.scoring_max_workers
        self.delay_range = delay_range or settings.scoring_delay_range
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="scoring",
        )
        self._lock = threading.Lock()
        self._in_flight = 0
        self._submitted = 0
        self._completed = 0
        self._failed = 0

    def submit(self, analysis_id: str) -> Future:
        task = ScoringTask(analysis_id=analysis_id)
        with self._lock:
            self._in_flight += 1
            self._submitted += 1
            metrics.gauge("scoring.in_flight", self._in_flight)
        metrics.increment("scoring.submitted")

        future = self._executor.submit(self._run, task)
        future.add_done_callback(lambda f: self._on_done(task, f))
        logger.debug("Scoring task queued", analysis_id=analysis_id)
        return future

    def _run(self, task: ScoringTask) -> ScoringResult:
        return score_analysis(
            task.analysis_id,
            self.session_factory,
            self.rng,
            sleep=self.sleep,
            delay_range=self.delay_range,
        )

    def _on_done(self, task: ScoringTask, future: Future) -> None:
        if future.cancelled():
            error: Optional[BaseException] = RuntimeError("cancelled")
        else:
            error = future.exception()
        with self._lock:
            self._in_flight -= 1
            if error is None:
                self._completed += 1
            else:
                self._failed += 1
            metrics.gauge("scoring.in_flight", self._in_flight)

        if error is None:
            metrics.increment("scoring.completed")
        else:
            metrics.increment("scoring.failed")
            logger.error(
                "Scoring task failed; analysis left PENDING",
                analysis_id=task.analysis_id,
                error=f"{type(error).__name__}: {error}",
            )

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "in_flight": self._in_flight,
                "submitted": self._submitted,
                "completed": self._completed,
                "failed": self._failed,
                "max_workers": self.max_workers,
            }

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
