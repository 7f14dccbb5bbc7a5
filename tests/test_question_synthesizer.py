"""
Tests for question synthesis.

Tests cover:
1. Exactly one correct option, no duplicate options
2. Distractor selection (same variant first, backfill, translation dedupe)
3. Small pools degrade gracefully; empty pools fail
4. Exam questions use their own choices
5. Prompt construction
6. Anti-repeat
"""
import random

import pytest

from jlpt_practice.domain import Category, Choice, ExamQuestion, Sentence, Word
from jlpt_practice.errors import InsufficientPool
from jlpt_practice.services.question_synthesizer import (
    build_prompt, generate_distractors, synthesize, synthesize_item,
)


def words(n, start=1):
    return [
        Word(id=i, text=f"語{i}", reading=f"ご{i}", translation=f"word {i}")
        for i in range(start, start + n)
    ]


def sentences(n, start=100):
    return [Sentence(id=i, text=f"文{i}。", translation=f"sentence {i}") for i in range(start, start + n)]


def exam_question(number=1, correct=3):
    return ExamQuestion(
        exam_key="N3-2019-07",
        question_number=number,
        section=Category.GRAMMAR,
        stem=f"stem {number}",
        choices=tuple(
            Choice(position=p, content=f"choice {p}", is_correct=p == correct, explanation=f"exp {p}")
            for p in range(1, 5)
        ),
    )


class TestQuestionShape:
    """Properties every synthesized question has."""

    def test_exactly_one_correct_option(self):
        rng = random.Random(1)
        pool = words(6) + sentences(3) + [exam_question(1), exam_question(2, correct=1)]
        for _ in range(50):
            question = synthesize(pool, rng=rng)
            assert sum(question.is_correct(o) for o in question.options) == 1

    def test_option_identities_are_distinct(self):
        rng = random.Random(2)
        pool = words(6) + sentences(3) + [exam_question()]
        for _ in range(50):
            question = synthesize(pool, rng=rng)
            identities = [o.identity for o in question.options]
            assert len(identities) == len(set(identities))

    def test_word_question_has_four_options(self):
        question = synthesize(words(4), rng=random.Random(0))
        assert len(question.options) == 4
        assert question.answer in question.options

    def test_option_text_is_translation(self):
        question = synthesize_item(words(1)[0], words(4), rng=random.Random(0))
        assert question.option_text(question.answer) == "word 1"


class TestDistractors:
    """Test generate_distractors()."""

    def test_prefers_same_variant(self):
        answer = words(1)[0]
        pool = words(5) + sentences(5)
        distractors = generate_distractors(answer, pool, rng=random.Random(4))

        assert len(distractors) == 3
        assert all(isinstance(d, Word) for d in distractors)
        assert answer not in distractors

    def test_backfills_from_other_variant(self):
        answer = words(1)[0]
        pool = words(2) + sentences(5)
        distractors = generate_distractors(answer, pool, rng=random.Random(4))

        assert len(distractors) == 3
        assert sum(isinstance(d, Word) for d in distractors) == 1

    def test_duplicate_translations_are_avoided_when_possible(self):
        answer = Word(id=1, text="家", translation="house")
        pool = [
            answer,
            Word(id=2, text="うち", translation="house"),
            Word(id=3, text="いえ", translation="home"),
            Word(id=4, text="部屋", translation="room"),
            Word(id=5, text="住まい", translation="home"),
            Word(id=6, text="台所", translation="kitchen"),
        ]
        for seed in range(10):
            distractors = generate_distractors(answer, pool, rng=random.Random(seed))
            assert sorted(d.translation for d in distractors) == ["home", "kitchen", "room"]

    def test_four_item_pool_always_gets_three_distractors(self):
        answer = Word(id=1, text="家", translation="house")
        pool = [
            answer,
            Word(id=2, text="うち", translation="house"),
            Word(id=3, text="いえ", translation="home"),
            Word(id=4, text="住まい", translation="home"),
        ]
        distractors = generate_distractors(answer, pool, rng=random.Random(0))

        assert len(distractors) == 3
        assert {d.identity for d in distractors} == {"word:2", "word:3", "word:4"}

    def test_answer_translation_is_reused_last(self):
        answer = Word(id=1, text="家", translation="house")
        pool = [answer, Word(id=2, text="うち", translation="house"),
                Word(id=3, text="いえ", translation="home"), Word(id=4, text="住まい", translation="home")]
        distractors = generate_distractors(answer, pool, count=2, rng=random.Random(0))
        assert [d.translation for d in distractors] == ["home", "home"]

    def test_exam_questions_are_never_distractors(self):
        answer = words(1)[0]
        distractors = generate_distractors(answer, [answer, exam_question()], rng=random.Random(0))
        assert distractors == []


class TestSmallPools:
    """Pool size edge cases."""

    def test_two_item_pool_gives_two_options(self):
        question = synthesize(words(2), rng=random.Random(0))
        assert len(question.options) == 2

    def test_single_item_pool_gives_one_option(self):
        question = synthesize(words(1), rng=random.Random(0))
        assert len(question.options) == 1
        assert question.is_correct(question.options[0])

    def test_empty_pool_fails(self):
        with pytest.raises(InsufficientPool):
            synthesize([])


class TestExamQuestions:
    """Exam questions bundle their own choices."""

    def test_options_are_the_choices(self):
        question = synthesize([exam_question(correct=3)], rng=random.Random(5))

        assert sorted(o.position for o in question.options) == [1, 2, 3, 4]
        assert question.answer.text == "choice 3"
        assert question.explanation == "exp 3"

    def test_passage_is_carried(self):
        item = ExamQuestion(
            exam_key="N3-2019-07", question_number=9, section=Category.READING, stem="q",
            passage="long passage",
            choices=(Choice(1, "a", True), Choice(2, "b", False)),
        )
        assert synthesize_item(item).passage == "long passage"

    def test_reveal_only_on_request(self):
        question = synthesize([exam_question()], rng=random.Random(0))

        assert "correct_option" not in question.as_dict()
        assert question.as_dict(reveal=True)["correct_option"]["text"] == "choice 3"


class TestPrompt:
    """Test build_prompt()."""

    def test_word_with_reading(self):
        assert build_prompt(Word(id=1, text="勉強", reading="べんきょう", translation="study")) == "勉強（べんきょう）"

    def test_word_without_reading(self):
        assert build_prompt(Word(id=1, text="テスト", translation="test")) == "テスト"

    def test_sentence(self):
        assert build_prompt(Sentence(id=1, text="雨です。", translation="It is raining.")) == "雨です。"

    def test_exam_question(self):
        assert build_prompt(exam_question(7)) == "stem 7"


class TestAntiRepeat:
    """Consecutive questions avoid repeating the answer."""

    def test_previous_answer_is_avoided(self):
        rng = random.Random(11)
        pool = words(2)
        differs = 0
        for _ in range(10):
            first = synthesize(pool, rng=rng)
            second = synthesize(pool, previous_identity=first.identity, rng=rng)
            differs += first.identity != second.identity
        assert differs >= 9

    def test_single_item_pool_accepts_repeat(self):
        pool = words(1)
        first = synthesize(pool, rng=random.Random(0))
        second = synthesize(pool, previous_identity=first.identity, rng=random.Random(0))
        assert second.identity == first.identity
