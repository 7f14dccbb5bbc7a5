"""SQLAlchemy models for the JLPT practice item store."""
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, ForeignKey, ForeignKeyConstraint,
    CheckConstraint, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from jlpt_practice.db.database import Base


class Exam(Base):
    """A past exam paper, e.g. N2 July 2022."""
    __tablename__ = "exams"

    exam_key = Column(String(32), primary_key=True)  # e.g. "N2-2022-07"
    level = Column(String(8), nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(String(2), nullable=False)  # "07" or "12"; legacy rows may hold "7"
    title = Column(Text, nullable=False, default="")

    __table_args__ = (
        Index("idx_exams_level_year", "level", "year"),
    )

    questions = relationship("ExamQuestionRow", back_populates="exam", cascade="all, delete-orphan")


class ExamQuestionRow(Base):
    """Question of an exam paper, keyed by (exam_key, question_number)."""
    __tablename__ = "exam_questions"

    exam_key = Column(String(32), ForeignKey("exams.exam_key", ondelete="CASCADE"), primary_key=True)
    question_number = Column(Integer, primary_key=True)
    section = Column(String(16), nullable=False)  # vocab | grammar | reading | listening
    stem = Column(Text, nullable=False)
    passage = Column(Text, nullable=True)

    exam = relationship("Exam", back_populates="questions")
    choices = relationship(
        "ExamChoiceRow",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="ExamChoiceRow.position",
    )


class ExamChoiceRow(Base):
    """Answer choice of an exam question."""
    __tablename__ = "exam_choices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    exam_key = Column(String(32), nullable=False)
    question_number = Column(Integer, nullable=False)
    position = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)
    explanation = Column(Text, nullable=False, default="")

    __table_args__ = (
        ForeignKeyConstraint(
            ["exam_key", "question_number"],
            ["exam_questions.exam_key", "exam_questions.question_number"],
            ondelete="CASCADE",
        ),
        UniqueConstraint("exam_key", "question_number", "position", name="uq_exam_choice"),
        Index("idx_exam_choices_q", "exam_key", "question_number"),
    )

    question = relationship("ExamQuestionRow", back_populates="choices")


class DailySet(Base):
    """Fixed question set for one day of the daily calendar."""
    __tablename__ = "daily_sets"

    daily_key = Column(String(32), primary_key=True)  # e.g. "N3-GRAMMAR-0008"
    level = Column(String(8), nullable=False)
    category = Column(String(16), nullable=False)
    week = Column(Integer, nullable=False)
    day = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("week >= 1 AND week <= 10", name="ck_daily_week"),
        CheckConstraint("day >= 1 AND day <= 7", name="ck_daily_day"),
        Index("idx_daily_sets_lc", "level", "category"),
    )

    questions = relationship("DailyQuestionRow", back_populates="daily_set", cascade="all, delete-orphan")


class DailyQuestionRow(Base):
    __tablename__ = "daily_questions"

    daily_key = Column(String(32), ForeignKey("daily_sets.daily_key", ondelete="CASCADE"), primary_key=True)
    item_number = Column(Integer, primary_key=True)
    question_type = Column(String(16), nullable=True)  # grammar | vocab
    stem = Column(Text, nullable=False)
    passage = Column(Text, nullable=True)

    daily_set = relationship("DailySet", back_populates="questions")
    choices = relationship(
        "DailyChoiceRow",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="DailyChoiceRow.position",
    )


class DailyChoiceRow(Base):
    __tablename__ = "daily_choices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    daily_key = Column(String(32), nullable=False)
    item_number = Column(Integer, nullable=False)
    position = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)
    explanation = Column(Text, nullable=False, default="")

    __table_args__ = (
        ForeignKeyConstraint(
            ["daily_key", "item_number"],
            ["daily_questions.daily_key", "daily_questions.item_number"],
            ondelete="CASCADE",
        ),
        UniqueConstraint("daily_key", "item_number", "position", name="uq_daily_choice"),
        Index("idx_daily_choices_key", "daily_key", "item_number"),
    )

    question = relationship("DailyQuestionRow", back_populates="choices")


class VocabItem(Base):
    """Word or example sentence with a single canonical translation."""
    __tablename__ = "vocab_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(16), CheckConstraint("kind IN ('word', 'sentence')"), nullable=False)
    text = Column(Text, nullable=False)
    reading = Column(Text, nullable=True)
    translation = Column(Text, nullable=False)
    level = Column(String(8), nullable=True)
    category = Column(String(16), nullable=False, default="vocab")

    __table_args__ = (
        Index("idx_vocab_level_kind", "level", "kind"),
    )


class Mistake(Base):
    """Append-only log of wrongly answered items."""
    __tablename__ = "mistakes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    item_identity = Column(Text, nullable=False)
    exam_key = Column(String(32), nullable=True)
    question_number = Column(Integer, nullable=True)
    prompt = Column(Text, nullable=False)
    correct_text = Column(Text, nullable=False)
    picked_text = Column(Text, nullable=False)
    picked_position = Column(Integer, nullable=True)
    level = Column(String(8), nullable=True)
    category = Column(String(16), nullable=True)

    __table_args__ = (
        Index("idx_mistakes_created", "created_at"),
    )


class KVEntry(Base):
    """Persistent key-value settings (unlock weeks, completion set, picks)."""
    __tablename__ = "kv_entries"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
