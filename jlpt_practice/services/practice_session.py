"""
Practice session controller.

A session walks through questions drawn from one pool snapshot:

    idle -> loading -> ready <-> answered
                    -> empty   (nothing matched)
                    -> error   (storage failed)

Random sessions draw a fresh question after every answer, avoiding the
item just answered. Sequential sessions walk their pool in order (a
daily unit, or an exam paper started with ``sequential=True``) and remember each
answer so earlier items can be revisited.
"""
import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from jlpt_practice.domain import (
    Criteria, DailyCriteria, ExamQuestion, Item, MistakeRecord, PracticeCriteria,
)
from jlpt_practice.errors import (
    EmptyPool, InsufficientPool, InvalidTransition, StaleGeneration, StorageUnavailable,
)
from jlpt_practice.logging_config import get_logger
from jlpt_practice.services.playback import NullPlayback, PlaybackSink
from jlpt_practice.services.pool_filter import make_daily_key, resolve_criteria
from jlpt_practice.services.question_synthesizer import Option, Question, synthesize, synthesize_item

logger = get_logger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ANSWERED = "answered"
    EMPTY = "empty"
    ERROR = "error"


class SessionMode(str, Enum):
    RANDOM = "random"
    SEQUENTIAL = "sequential"


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of one submitted answer."""
    correct: bool
    picked: Option
    answer: Option
    score: int
    total: int
    explanation: str = ""
    mistake_logged: Optional[bool] = None

    def as_dict(self) -> dict:
        return {
            "is_correct": self.correct,
            "picked": self.picked.as_dict(),
            "correct_option": self.answer.as_dict(),
            "explanation": self.explanation,
            "score": self.score,
            "total": self.total,
            "mistake_logged": self.mistake_logged,
        }


def _value(enum_or_none) -> Optional[str]:
    return enum_or_none.value if enum_or_none is not None else None


def mistake_for(question: Question, picked: Option) -> MistakeRecord:
    """Mistake record for a wrong answer to ``question``."""
    item = question.item
    match item:
        case ExamQuestion(exam_key=exam_key, question_number=number, section=section):
            return MistakeRecord(
                item_identity=item.identity,
                prompt=question.prompt,
                correct_text=question.answer.text,
                picked_text=picked.text,
                level=_value(item.level),
                category=_value(section),
                exam_key=exam_key,
                question_number=number,
                picked_position=picked.position,
            )
        case _:
            return MistakeRecord(
                item_identity=item.identity,
                prompt=question.prompt,
                correct_text=question.answer.text,
                picked_text=picked.text,
                level=_value(item.level),
                category=_value(item.category),
            )


class PracticeSession:
    """
    One user's practice run over a frozen pool.

    Args:
        pool_filter: PoolFilter used by init()
        item_store: ItemStore receiving mistake records
        rng: random.Random used for level resolution and synthesis
        playback: sink notified with each newly presented prompt
        session_id: included in log records
    """

    def __init__(self, pool_filter, item_store, rng: Optional[random.Random] = None,
                 playback: Optional[PlaybackSink] = None, session_id: Optional[str] = None):
        self.pool_filter = pool_filter
        self.store = item_store
        self.rng = rng or random.Random()
        self.playback = playback or NullPlayback()
        self.session_id = session_id

        self.state = SessionState.IDLE
        self.mode = SessionMode.RANDOM
        self.criteria: Optional[Criteria] = None
        self.pool: Tuple[Item, ...] = ()
        self.pending_mistakes: List[MistakeRecord] = []
        self._generation = 0
        self._reset()

    def _reset(self) -> None:
        self.question: Optional[Question] = None
        self.selection: Optional[Option] = None
        self.score = 0
        self.total = 0
        self.index = 0
        self.answers: Dict[int, SubmitResult] = {}
        self._questions: Dict[int, Question] = {}
        self.last_result: Optional[SubmitResult] = None
        self.last_answer_identity: Optional[str] = None
        self.message: Optional[str] = None
        self.store_loaded = True

    @property
    def generation(self) -> int:
        return self._generation

    def _log_extra(self, **fields) -> dict:
        return {"session_id": self.session_id, **fields}

    def _check_generation(self, generation: int) -> None:
        if generation != self._generation:
            raise StaleGeneration(generation, self._generation)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def init(self, criteria: Criteria) -> bool:
        """
        Load the pool for ``criteria`` and present the first question.

        The pool is fetched off the event loop. If another init() starts
        before this one resolves, this call's result is discarded.

        Returns:
            True if this call's result was applied, False if it was superseded
        """
        self._generation += 1
        generation = self._generation
        self.state = SessionState.LOADING
        self._reset()

        if isinstance(criteria, PracticeCriteria):
            criteria = resolve_criteria(criteria, self.rng)
        self.criteria = criteria

        pool: List[Item] = []
        failure = None
        try:
            pool = await asyncio.to_thread(self.pool_filter.filter, criteria)
        except (EmptyPool, InsufficientPool, StorageUnavailable) as e:
            failure = e

        try:
            self._check_generation(generation)
        except StaleGeneration as e:
            logger.debug(f"Discarding superseded init: {e}", extra=self._log_extra(generation=generation))
            return False

        if failure is None:
            self.pool = tuple(pool)
            walks_in_order = isinstance(criteria, DailyCriteria) or criteria.sequential
            self.mode = SessionMode.SEQUENTIAL if walks_in_order else SessionMode.RANDOM
            try:
                if self.mode == SessionMode.SEQUENTIAL:
                    self._go_to(0)
                else:
                    self._present(synthesize(self.pool, rng=self.rng))
            except InsufficientPool as e:
                failure = e

        match failure:
            case None:
                logger.info(
                    f"Session ready: {len(self.pool)} items, {self.mode.value} mode",
                    extra=self._log_extra(generation=generation),
                )
            case EmptyPool() | InsufficientPool():
                self.pool = ()
                self.state = SessionState.EMPTY
                self.message = str(failure)
                self.store_loaded = getattr(failure, "store_loaded", True)
            case StorageUnavailable():
                self.pool = ()
                self.state = SessionState.ERROR
                self.message = str(failure)
                logger.warning(f"Session failed to load: {failure}", extra=self._log_extra(generation=generation))
        return True

    # ------------------------------------------------------------------
    # Answering
    # ------------------------------------------------------------------

    def pick(self, option_id: str) -> bool:
        """Select an option of the current question. Only allowed while ready."""
        if self.state != SessionState.READY or self.question is None:
            return False
        option = self.question.find_option(option_id)
        if option is None:
            return False
        self.selection = option
        return True

    def submit(self) -> SubmitResult:
        """
        Score the selected option.

        A wrong answer is written to the mistake log. Writing it may fail
        without affecting the score; the record is queued and retried on
        the next submit.

        Raises:
            InvalidTransition: not ready, or nothing selected
        """
        if self.state != SessionState.READY or self.selection is None:
            raise InvalidTransition("Submit needs a ready question with a selected option")

        self.flush_pending_mistakes()
        question, picked = self.question, self.selection
        correct = question.is_correct(picked)
        self.total += 1
        if correct:
            self.score += 1

        mistake_logged = None
        if not correct:
            mistake_logged = self._log_mistake(mistake_for(question, picked))

        result = SubmitResult(
            correct=correct,
            picked=picked,
            answer=question.answer,
            score=self.score,
            total=self.total,
            explanation=question.explanation,
            mistake_logged=mistake_logged,
        )
        if self.mode == SessionMode.SEQUENTIAL:
            self.answers[self.index] = result
        self.last_result = result
        self.last_answer_identity = question.identity
        self.state = SessionState.ANSWERED
        return result

    def _log_mistake(self, record: MistakeRecord) -> bool:
        try:
            self.store.append_mistake(record)
            return True
        except StorageUnavailable:
            logger.warning(
                "Could not log mistake; queued for retry",
                exc_info=True,
                extra=self._log_extra(item_identity=record.item_identity),
            )
            self.pending_mistakes.append(record)
            return False

    def flush_pending_mistakes(self) -> int:
        """Retry queued mistake records in order. Returns how many were written."""
        written = 0
        while self.pending_mistakes:
            try:
                self.store.append_mistake(self.pending_mistakes[0])
            except StorageUnavailable:
                logger.debug(f"{len(self.pending_mistakes)} mistake records still queued",
                             extra=self._log_extra())
                break
            self.pending_mistakes.pop(0)
            written += 1
        return written

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def next(self) -> bool:
        """
        Move on after an answer.

        Returns:
            False if a sequential session is already on its last item

        Raises:
            InvalidTransition: the current question has not been answered
        """
        if self.state != SessionState.ANSWERED:
            raise InvalidTransition("Next is only allowed after answering")
        if self.mode == SessionMode.RANDOM:
            self._present(synthesize(self.pool, previous_identity=self.last_answer_identity, rng=self.rng))
            return True
        if self.index >= len(self.pool) - 1:
            return False
        self._go_to(self.index + 1)
        return True

    def prev(self) -> bool:
        self._require_sequential()
        if self.index == 0:
            return False
        self._go_to(self.index - 1)
        return True

    def jump_to(self, index: int) -> None:
        self._require_sequential()
        if not 0 <= index < len(self.pool):
            raise IndexError(f"Item index {index} out of range 0..{len(self.pool) - 1}")
        self._go_to(index)

    def _require_sequential(self) -> None:
        if self.mode != SessionMode.SEQUENTIAL or self.state not in (SessionState.READY, SessionState.ANSWERED):
            raise InvalidTransition("Only an active daily session can be navigated")

    def _present(self, question: Question) -> None:
        self.question = question
        self.selection = None
        self.state = SessionState.READY
        self.playback.speak(question.prompt)

    def _go_to(self, index: int) -> None:
        question = self._questions.get(index)
        if question is None:
            question = synthesize_item(self.pool[index], self.pool, rng=self.rng)
            self._questions[index] = question
        self.index = index

        answered = self.answers.get(index)
        if answered is None:
            self.last_result = None
            self._present(question)
        else:
            self.question = question
            self.selection = answered.picked
            self.last_result = answered
            self.state = SessionState.ANSWERED

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    @property
    def is_finished(self) -> bool:
        """True once every item of a sequential session has been answered."""
        return (
            self.mode == SessionMode.SEQUENTIAL
            and bool(self.pool)
            and len(self.answers) == len(self.pool)
        )

    def complete_daily(self, ledger) -> Dict:
        """
        Mark the daily unit done once every item has been answered.

        Raises:
            InvalidTransition: not a daily session, or items left unanswered
            StorageUnavailable: the ledger could not be written
        """
        if not isinstance(self.criteria, DailyCriteria) or not self.is_finished:
            raise InvalidTransition("Only a finished daily session can be completed")
        c = self.criteria
        result = ledger.mark_practice_done(c.level, c.category, c.week, c.day)
        logger.info(
            f"Daily unit done with {self.score}/{self.total}",
            extra=self._log_extra(daily_key=make_daily_key(c.level, c.category, c.week, c.day)),
        )
        return result

    def snapshot(self) -> dict:
        """Serializable view of the session for the API."""
        answered = self.state == SessionState.ANSWERED
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "mode": self.mode.value,
            "generation": self._generation,
            "score": self.score,
            "total": self.total,
            "index": self.index,
            "pool_size": len(self.pool),
            "question": self.question.as_dict(reveal=answered) if self.question else None,
            "selected": self.selection.identity if self.selection else None,
            "last_result": self.last_result.as_dict() if answered and self.last_result else None,
            "answered_indexes": sorted(self.answers),
            "finished": self.is_finished,
            "message": self.message,
            "store_loaded": self.store_loaded,
            "pending_mistakes": len(self.pending_mistakes),
        }
