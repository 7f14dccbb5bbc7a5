"""Question synthesis with distractor selection and anti-repeat."""
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from jlpt_practice.constants import ANTI_REPEAT_MAX_TRIES, DISTRACTOR_COUNT
from jlpt_practice.domain import Choice, ExamQuestion, Item, Sentence, Word
from jlpt_practice.errors import InsufficientPool


@dataclass(frozen=True)
class Option:
    """One displayable answer option.

    ``source`` is the Word/Sentence the option was drawn from, or the exam
    Choice it presents.
    """
    identity: str
    text: str
    source: Union[Word, Sentence, Choice]
    position: Optional[int] = None
    explanation: str = ""

    def as_dict(self) -> dict:
        return {"id": self.identity, "text": self.text, "position": self.position}


@dataclass(frozen=True)
class Question:
    """A synthesized multiple-choice question. Immutable."""
    item: Item
    prompt: str
    options: Tuple[Option, ...]
    answer: Option
    passage: Optional[str] = None

    @property
    def identity(self) -> str:
        """Identity of the item this question asks about."""
        return self.item.identity

    @property
    def explanation(self) -> str:
        return self.answer.explanation

    def option_text(self, option: Option) -> str:
        return option.text

    def is_correct(self, option: Option) -> bool:
        return option.identity == self.answer.identity

    def find_option(self, identity: str) -> Optional[Option]:
        return next((o for o in self.options if o.identity == identity), None)

    def as_dict(self, reveal: bool = False) -> dict:
        data = {
            "item_id": self.identity,
            "kind": self.item.kind,
            "prompt": self.prompt,
            "passage": self.passage,
            "options": [o.as_dict() for o in self.options],
        }
        if reveal:
            data["correct_option"] = self.answer.as_dict()
            data["explanation"] = self.explanation
        return data


def build_prompt(item: Item) -> str:
    """
    Prompt text for an item.

    Words show their reading in full-width parentheses when they have one,
    e.g. "勉強（べんきょう）"; sentences show the text; exam questions the stem.
    """
    match item:
        case Word(text=text, reading=reading):
            return f"{text}（{reading}）" if reading else text
        case Sentence(text=text):
            return text
        case ExamQuestion(stem=stem):
            return stem
        case _:
            raise TypeError(f"Unsupported item type: {type(item).__name__}")


def generate_distractors(
    answer: Union[Word, Sentence],
    pool: Sequence[Item],
    count: int = DISTRACTOR_COUNT,
    rng=None,
) -> List[Union[Word, Sentence]]:
    """
    Pick distractor items for a word/sentence answer.

    Strategy:
    - Prefer items of the same variant (word vs sentence)
    - Backfill from the other variant when fewer than ``count`` exist
    - Never repeat the answer or an already chosen item
    - Prefer translations not already on screen; a pool of 4 or more items
      still yields ``count`` distractors, reusing a translation only when
      the distinct ones run out (answer's own translation last)

    Args:
        answer: The correct item
        pool: Candidate pool (exam questions are ignored)
        count: Number of distractors wanted (default 3)
        rng: random.Random-like source (default: module random)

    Returns:
        Up to ``count`` distinct distractors; fewer only if the pool has fewer
        than ``count`` other word/sentence items
    """
    rng = rng or random
    candidates = [
        x for x in pool
        if isinstance(x, (Word, Sentence)) and x.identity != answer.identity
    ]
    same_kind = [x for x in candidates if x.kind == answer.kind]
    other_kind = [x for x in candidates if x.kind != answer.kind]
    rng.shuffle(same_kind)
    rng.shuffle(other_kind)

    ordered = same_kind + other_kind
    chosen = []
    seen_ids = {answer.identity}
    seen_texts = {answer.translation}
    # Distinct translations, then any but the answer's, then anything
    passes = (
        lambda c: c.translation not in seen_texts,
        lambda c: c.translation != answer.translation,
        lambda c: True,
    )
    for allowed in passes:
        for candidate in ordered:
            if len(chosen) >= count:
                return chosen
            if candidate.identity in seen_ids or not allowed(candidate):
                continue
            seen_ids.add(candidate.identity)
            seen_texts.add(candidate.translation)
            chosen.append(candidate)
    return chosen


def _vocab_option(item: Union[Word, Sentence]) -> Option:
    return Option(identity=item.identity, text=item.translation, source=item)


def _choice_option(question: ExamQuestion, choice: Choice) -> Option:
    return Option(
        identity=f"{question.identity}/{choice.position}",
        text=choice.content,
        source=choice,
        position=choice.position,
        explanation=choice.explanation,
    )


def synthesize_item(item: Item, pool: Sequence[Item] = (), rng=None) -> Question:
    """
    Build the question for a specific item.

    Exam questions shuffle their own choices; words and sentences draw
    distractors from ``pool``.
    """
    rng = rng or random
    match item:
        case ExamQuestion():
            options = [_choice_option(item, c) for c in item.choices]
            answer = _choice_option(item, item.correct_choice)
            passage = item.passage
        case Word() | Sentence():
            distractors = generate_distractors(item, pool, rng=rng)
            answer = _vocab_option(item)
            options = [answer] + [_vocab_option(d) for d in distractors]
            passage = None
        case _:
            raise TypeError(f"Unsupported item type: {type(item).__name__}")

    # random.shuffle is an unbiased Fisher-Yates permutation
    rng.shuffle(options)
    return Question(
        item=item,
        prompt=build_prompt(item),
        options=tuple(options),
        answer=answer,
        passage=passage,
    )


def synthesize(
    pool: Sequence[Item],
    previous_identity: Optional[str] = None,
    rng=None,
) -> Question:
    """
    Synthesize one question from a pool.

    The answer item is drawn uniformly. When ``previous_identity`` is given
    the draw is repeated (up to ANTI_REPEAT_MAX_TRIES times) until a
    different item comes up; a pool holding a single distinct item accepts
    the repeat.

    Raises:
        InsufficientPool: the pool is empty
    """
    if not pool:
        raise InsufficientPool("Cannot build a question from an empty pool")
    rng = rng or random

    item = rng.choice(pool)
    if previous_identity is not None and len({x.identity for x in pool}) > 1:
        tries = 0
        while item.identity == previous_identity and tries < ANTI_REPEAT_MAX_TRIES:
            item = rng.choice(pool)
            tries += 1

    return synthesize_item(item, pool, rng=rng)
