"""Item store: practice items and the mistake log on top of SQLAlchemy.

Every public method opens its own short-lived database session from the
injected session factory, so the store can be called from worker threads.
Database failures surface as StorageUnavailable.
"""
import re
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, or_, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload, sessionmaker

from jlpt_practice.db.models import (
    Exam, ExamQuestionRow, ExamChoiceRow, DailySet, DailyQuestionRow, DailyChoiceRow,
    VocabItem, Mistake,
)
from jlpt_practice.domain import (
    Category, Choice, ExamQuestion, Level, MistakeRecord, Sentence, Word,
)
from jlpt_practice.errors import StorageUnavailable
from jlpt_practice.services.pool_filter import make_daily_key
from jlpt_practice.logging_config import get_logger

logger = get_logger(__name__)

DAILY_KEY_PATTERN = re.compile(r"^N[1-5]-(GRAMMAR|VOCAB)-\d{4}$")


def _level_or_none(value: Optional[str]) -> Optional[Level]:
    try:
        return Level(value) if value else None
    except ValueError:
        return None


def _choices(rows) -> tuple:
    return tuple(
        Choice(
            position=c.position,
            content=c.content,
            is_correct=bool(c.is_correct),
            explanation=c.explanation or "",
        )
        for c in sorted(rows, key=lambda c: c.position)
    )


def _daily_section(question_type: Optional[str]) -> Category:
    return Category.GRAMMAR if question_type == "grammar" else Category.VOCAB


def exam_question_from_row(row: ExamQuestionRow, exam: Exam) -> ExamQuestion:
    return ExamQuestion(
        exam_key=row.exam_key,
        question_number=row.question_number,
        section=Category(row.section),
        stem=row.stem,
        passage=row.passage,
        choices=_choices(row.choices),
        level=_level_or_none(exam.level),
        year=exam.year,
        month=exam.month,
    )


def daily_question_from_row(row: DailyQuestionRow, daily_set: DailySet) -> ExamQuestion:
    return ExamQuestion(
        exam_key=row.daily_key,
        question_number=row.item_number,
        section=_daily_section(row.question_type),
        stem=row.stem,
        passage=row.passage,
        choices=_choices(row.choices),
        level=_level_or_none(daily_set.level),
    )


def vocab_item_from_row(row: VocabItem):
    if row.kind == "word":
        return Word(
            id=row.id,
            text=row.text,
            reading=row.reading,
            translation=row.translation,
            level=_level_or_none(row.level),
            category=Category(row.category),
        )
    return Sentence(
        id=row.id,
        text=row.text,
        translation=row.translation,
        level=_level_or_none(row.level),
        category=Category(row.category),
    )


def mistake_from_row(row: Mistake) -> MistakeRecord:
    return MistakeRecord(
        id=row.id,
        created_at=row.created_at,
        item_identity=row.item_identity,
        exam_key=row.exam_key,
        question_number=row.question_number,
        prompt=row.prompt,
        correct_text=row.correct_text,
        picked_text=row.picked_text,
        picked_position=row.picked_position,
        level=row.level,
        category=row.category,
    )


class ItemStore:
    """Query and maintain the local practice corpus and mistake log."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, write: bool = False):
        db = self._session_factory()
        try:
            yield db
            if write:
                db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Item store operation failed: {e}", exc_info=True)
            raise StorageUnavailable(str(e)) from e
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Corpus queries
    # ------------------------------------------------------------------

    def counts(self) -> Dict[str, int]:
        """Row counts per corpus table (exams, questions, daily sets, vocab)."""
        with self._session() as db:
            return {
                "exams": db.query(Exam).count(),
                "exam_questions": db.query(ExamQuestionRow).count(),
                "daily_sets": db.query(DailySet).count(),
                "daily_questions": db.query(DailyQuestionRow).count(),
                "vocab_items": db.query(VocabItem).count(),
            }

    def is_loaded(self) -> bool:
        """True once any corpus content has been stored."""
        return any(self.counts().values())

    def query_items(
        self,
        levels: Optional[Sequence[str]] = None,
        sections: Optional[Sequence[str]] = None,
        year: Optional[int] = None,
        month: Optional[str] = None,
    ) -> List[ExamQuestion]:
        """
        Exam questions matching every given filter; None means "any".

        Months are compared with leading zeros stripped, so "7" matches "07".
        Results are ordered newest exam first, then by question number.
        """
        with self._session() as db:
            query = (
                db.query(ExamQuestionRow, Exam)
                .join(Exam, Exam.exam_key == ExamQuestionRow.exam_key)
                .options(selectinload(ExamQuestionRow.choices))
            )
            if levels is not None:
                query = query.filter(Exam.level.in_(list(levels)))
            if sections is not None:
                query = query.filter(ExamQuestionRow.section.in_(list(sections)))
            if year is not None:
                query = query.filter(Exam.year == year)
            if month is not None:
                query = query.filter(or_(
                    Exam.month == month,
                    func.ltrim(Exam.month, "0") == month.lstrip("0"),
                ))
            rows = query.order_by(
                desc(Exam.year), desc(Exam.month), Exam.exam_key, ExamQuestionRow.question_number
            ).all()
            return self._convert(rows, exam_question_from_row)

    def query_vocab(
        self,
        levels: Optional[Sequence[str]] = None,
        kinds: Optional[Sequence[str]] = None,
    ) -> List:
        """Words and sentences filtered by level and kind ('word'/'sentence')."""
        with self._session() as db:
            query = db.query(VocabItem)
            if levels is not None:
                query = query.filter(VocabItem.level.in_(list(levels)))
            if kinds is not None:
                query = query.filter(VocabItem.kind.in_(list(kinds)))
            return [vocab_item_from_row(row) for row in query.order_by(VocabItem.id).all()]

    def query_by_daily_key(self, daily_key: str) -> List[ExamQuestion]:
        """The fixed question set of one daily unit, in item order."""
        with self._session() as db:
            rows = (
                db.query(DailyQuestionRow, DailySet)
                .join(DailySet, DailySet.daily_key == DailyQuestionRow.daily_key)
                .options(selectinload(DailyQuestionRow.choices))
                .filter(DailyQuestionRow.daily_key == daily_key)
                .order_by(DailyQuestionRow.item_number)
                .all()
            )
            return self._convert(rows, daily_question_from_row)

    def get_question_detail(self, exam_key: str, question_number: int) -> Optional[ExamQuestion]:
        """Look up one exam or daily question (daily keys look like N3-GRAMMAR-0008)."""
        with self._session() as db:
            if DAILY_KEY_PATTERN.match(exam_key):
                row = (
                    db.query(DailyQuestionRow, DailySet)
                    .join(DailySet, DailySet.daily_key == DailyQuestionRow.daily_key)
                    .filter(
                        DailyQuestionRow.daily_key == exam_key,
                        DailyQuestionRow.item_number == question_number,
                    )
                    .first()
                )
                converter = daily_question_from_row
            else:
                row = (
                    db.query(ExamQuestionRow, Exam)
                    .join(Exam, Exam.exam_key == ExamQuestionRow.exam_key)
                    .filter(
                        ExamQuestionRow.exam_key == exam_key,
                        ExamQuestionRow.question_number == question_number,
                    )
                    .first()
                )
                converter = exam_question_from_row
            if row is None:
                return None
            converted = self._convert([row], converter)
            return converted[0] if converted else None

    @staticmethod
    def _convert(rows: Iterable, converter) -> list:
        items = []
        for question, parent in rows:
            try:
                items.append(converter(question, parent))
            except ValueError as e:
                # Malformed rows (e.g. two correct choices) are left out of pools
                logger.warning(f"Skipping malformed question: {e}")
        return items

    # ------------------------------------------------------------------
    # Mistake log
    # ------------------------------------------------------------------

    def append_mistake(self, record: MistakeRecord) -> MistakeRecord:
        """Append a mistake; returns the record with its database id."""
        with self._session(write=True) as db:
            row = Mistake(
                created_at=record.created_at,
                item_identity=record.item_identity,
                exam_key=record.exam_key,
                question_number=record.question_number,
                prompt=record.prompt,
                correct_text=record.correct_text,
                picked_text=record.picked_text,
                picked_position=record.picked_position,
                level=record.level,
                category=record.category,
            )
            db.add(row)
            db.flush()
            stored = mistake_from_row(row)
        logger.debug("Mistake recorded", extra={"item_identity": record.item_identity})
        return stored

    def list_mistakes(self) -> List[MistakeRecord]:
        """All mistakes, newest first."""
        with self._session() as db:
            rows = db.query(Mistake).order_by(desc(Mistake.created_at), desc(Mistake.id)).all()
            return [mistake_from_row(row) for row in rows]

    def clear_mistakes(self) -> int:
        """Delete every mistake record. Returns the number removed."""
        with self._session(write=True) as db:
            removed = db.query(Mistake).delete(synchronize_session=False)
        logger.info(f"Cleared {removed} mistake records")
        return removed

    # ------------------------------------------------------------------
    # Resync
    # ------------------------------------------------------------------

    def replace_contents(self, corpus: dict) -> Dict[str, int]:
        """
        Replace the whole corpus in one transaction.

        The mistake log is kept. The corpus is validated before anything is
        written; a ValueError leaves the store unchanged.

        Args:
            corpus: Mapping with optional "exams", "daily_sets", "words" and
                "sentences" lists (see jlpt_practice/data/sample_corpus.json)

        Returns:
            Counts of stored exams, exam questions, daily sets and vocab items
        """
        exams = corpus.get("exams", [])
        daily_sets = corpus.get("daily_sets", [])
        words = corpus.get("words", [])
        sentences = corpus.get("sentences", [])
        _validate_corpus(exams, daily_sets, words, sentences)

        with self._session(write=True) as db:
            for model in (ExamChoiceRow, ExamQuestionRow, Exam,
                          DailyChoiceRow, DailyQuestionRow, DailySet, VocabItem):
                db.query(model).delete(synchronize_session=False)

            question_count = 0
            for exam in exams:
                db.add(Exam(
                    exam_key=exam["exam_key"],
                    level=exam["level"],
                    year=int(exam["year"]),
                    month=str(exam["month"]).zfill(2),
                    title=exam.get("title", ""),
                ))
                for q in exam.get("questions", []):
                    question_count += 1
                    db.add(ExamQuestionRow(
                        exam_key=exam["exam_key"],
                        question_number=q["question_number"],
                        section=q["section"],
                        stem=q["stem"],
                        passage=q.get("passage"),
                    ))
                    for c in q["choices"]:
                        db.add(ExamChoiceRow(
                            exam_key=exam["exam_key"],
                            question_number=q["question_number"],
                            position=c["position"],
                            content=c["content"],
                            is_correct=bool(c["is_correct"]),
                            explanation=c.get("explanation") or "",
                        ))

            for ds in daily_sets:
                daily_key = ds.get("daily_key") or make_daily_key(
                    ds["level"], ds["category"], ds["week"], ds["day"]
                )
                db.add(DailySet(
                    daily_key=daily_key,
                    level=ds["level"],
                    category=ds["category"],
                    week=ds["week"],
                    day=ds["day"],
                ))
                for q in ds.get("questions", []):
                    db.add(DailyQuestionRow(
                        daily_key=daily_key,
                        item_number=q["item_number"],
                        question_type=q.get("question_type", ds["category"]),
                        stem=q["stem"],
                        passage=q.get("passage"),
                    ))
                    for c in q["choices"]:
                        db.add(DailyChoiceRow(
                            daily_key=daily_key,
                            item_number=q["item_number"],
                            position=c["position"],
                            content=c["content"],
                            is_correct=bool(c["is_correct"]),
                            explanation=c.get("explanation") or "",
                        ))

            for kind, entries, default_category in (
                ("word", words, "vocab"), ("sentence", sentences, "grammar")
            ):
                for entry in entries:
                    db.add(VocabItem(
                        id=entry.get("id"),
                        kind=kind,
                        text=entry["text"],
                        reading=entry.get("reading"),
                        translation=entry["translation"],
                        level=entry.get("level"),
                        category=entry.get("category", default_category),
                    ))

        stored = {
            "exams": len(exams),
            "exam_questions": question_count,
            "daily_sets": len(daily_sets),
            "vocab_items": len(words) + len(sentences),
        }
        logger.info(f"Item store replaced: {stored}")
        return stored


def _validate_corpus(exams: list, daily_sets: list,
                     words: Sequence = (), sentences: Sequence = ()) -> None:
    """
    Build domain objects for every entry so bad data fails before writing.

    Raises:
        ValueError: an entry is missing a field or has an invalid value
    """
    try:
        _build_corpus_items(exams, daily_sets, words, sentences)
    except (KeyError, TypeError) as e:
        raise ValueError(f"Corpus entry is missing or has a malformed field: {e!r}") from e


def _build_corpus_items(exams, daily_sets, words, sentences) -> None:
    for exam in exams:
        Level(exam["level"])
        int(exam["year"])
        str(exam["month"])
        for q in exam.get("questions", []):
            ExamQuestion(
                exam_key=exam["exam_key"],
                question_number=q["question_number"],
                section=Category(q["section"]),
                stem=q["stem"],
                choices=tuple(
                    Choice(c["position"], c["content"], bool(c["is_correct"])) for c in q["choices"]
                ),
            )
    for ds in daily_sets:
        make_daily_key(ds["level"], ds["category"], ds["week"], ds["day"])
        for q in ds.get("questions", []):
            ExamQuestion(
                exam_key=ds.get("daily_key") or f"{ds['level']}-{ds['category']}",
                question_number=q["item_number"],
                section=_daily_section(q.get("question_type", ds["category"])),
                stem=q["stem"],
                choices=tuple(
                    Choice(c["position"], c["content"], bool(c["is_correct"])) for c in q["choices"]
                ),
            )
    for entry in words:
        Word(
            id=int(entry["id"]),
            text=entry["text"],
            translation=entry["translation"],
            reading=entry.get("reading"),
            level=_level_or_none(entry.get("level")),
            category=Category(entry.get("category", Category.VOCAB.value)),
        )
    for entry in sentences:
        Sentence(
            id=int(entry["id"]),
            text=entry["text"],
            translation=entry["translation"],
            level=_level_or_none(entry.get("level")),
            category=Category(entry.get("category", Category.GRAMMAR.value)),
        )
