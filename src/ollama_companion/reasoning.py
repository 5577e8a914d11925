"""Split model output into reasoning text and answer text.

Reasoning models mark their deliberation in several incompatible ways.
This module recognises the common conventions with an ordered cascade of
pure passes over the text:

1. paired markup tags such as ``<think>...</think>``;
2. a leading label block such as ``**Thinking:** ... **Response:** ...``;
3. a leading bracket block such as ``[Thinking] ... [Response] ...``.

The first pass that yields non-empty reasoning wins. Its answer is run
through the cascade again until nothing more is found, so re-extracting
an answer never produces a second split. The pattern table is
data, not code: pass custom ``tag_names``, ``labeled_patterns`` or
``bracketed_patterns`` to :class:`ReasoningExtractor` to teach it a new
dialect.

Extraction runs on the cumulative streamed text after every chunk, so all
passes are total (they never raise) and deterministic.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import re
from typing import Any, NamedTuple

DEFAULT_TAG_NAMES: tuple[str, ...] = (
    "think",
    "thinking",
    "reasoning",
    "thought",
    "internal_thoughts",
    "internal-thoughts",
    "internal thoughts",
    "reflection",
)

_REASONING_LABELS = r"(?:Internal\s+Thoughts?|Thinking|Thought|Reasoning)"
_ANSWER_LABELS = r"(?:Response|Answer|Output|Reply)"


class ReasoningSplit(NamedTuple):
    """Result of an extraction. ``reasoning`` is None when nothing was found."""

    reasoning: str | None
    answer: str


@dataclass(frozen=True)
class BlockPattern:
    """A leading label that opens reasoning and a label that closes it.

    ``opening`` is matched at the start of the text (after whitespace).
    ``closing`` is searched for after the opening label; everything after it
    is the answer. Without a closing label the reasoning runs to the end.
    """

    name: str
    opening: str
    closing: str

    def compile(self) -> tuple[re.Pattern[str], re.Pattern[str]]:
        return (
            re.compile(r"\A\s*" + self.opening, re.IGNORECASE | re.MULTILINE),
            re.compile(self.closing, re.IGNORECASE | re.MULTILINE),
        )


# Pass 2: emphasis-wrapped labels first, then plain ``Label:`` forms.
LABELED_BLOCK_PATTERNS: tuple[BlockPattern, ...] = (
    BlockPattern(
        name="markdown-bold",
        opening=r"\*\*" + _REASONING_LABELS + r"\s*:?\s*\*\*\s*:?",
        closing=r"\*\*" + _ANSWER_LABELS + r"\s*:?\s*\*\*\s*:?",
    ),
    BlockPattern(
        name="markdown-heading",
        opening=r"#{1,6}[ \t]*" + _REASONING_LABELS + r"[ \t]*:?[ \t]*$",
        closing=r"^#{1,6}[ \t]*" + _ANSWER_LABELS + r"[ \t]*:?[ \t]*$",
    ),
    BlockPattern(
        name="plain-label",
        opening=_REASONING_LABELS + r"\s*:",
        closing=r"\b" + _ANSWER_LABELS + r"\s*:",
    ),
)

# Pass 3: square-bracket labels.
BRACKETED_BLOCK_PATTERNS: tuple[BlockPattern, ...] = (
    BlockPattern(
        name="bracket",
        opening=r"\[\s*" + _REASONING_LABELS + r"\s*\]",
        closing=r"\[\s*" + _ANSWER_LABELS + r"\s*\]",
    ),
)


def _tag_alternation(tag_names: Sequence[str]) -> str:
    # Longest first so "thinking" is not shadowed by "think".
    ordered = sorted({name.strip() for name in tag_names if name.strip()}, key=len, reverse=True)
    parts = [r"\s+".join(re.escape(word) for word in name.split()) for name in ordered]
    return "|".join(parts)


class ReasoningExtractor:
    """Stateless reasoning/answer splitter driven by a pattern table."""

    def __init__(
        self,
        tag_names: Sequence[str] = DEFAULT_TAG_NAMES,
        labeled_patterns: Sequence[BlockPattern] = LABELED_BLOCK_PATTERNS,
        bracketed_patterns: Sequence[BlockPattern] = BRACKETED_BLOCK_PATTERNS,
    ) -> None:
        alternation = _tag_alternation(tag_names)
        self._paired_tag = re.compile(
            rf"<\s*(?P<tag>{alternation})\s*>(?P<body>.*?)<\s*/\s*(?P=tag)\s*>",
            re.IGNORECASE | re.DOTALL,
        )
        self._open_tag = re.compile(
            rf"\A\s*<\s*(?:{alternation})\s*>(?P<body>.*)\Z",
            re.IGNORECASE | re.DOTALL,
        )
        self._labeled = tuple(pattern.compile() for pattern in labeled_patterns)
        self._bracketed = tuple(pattern.compile() for pattern in bracketed_patterns)

    def extract(self, raw_text: Any) -> ReasoningSplit:
        """Return ``(reasoning, answer)`` for ``raw_text``. Never raises."""
        if raw_text is None:
            return ReasoningSplit(None, "")
        text = raw_text if isinstance(raw_text, str) else str(raw_text)

        fragments: list[str] = []
        answer = text
        while True:
            split = self._cascade(answer)
            answer = split.answer
            if split.reasoning is None:
                break
            fragments.append(split.reasoning)
        return ReasoningSplit("\n\n".join(fragments) if fragments else None, answer)

    __call__ = extract

    def _cascade(self, text: str) -> ReasoningSplit:
        reasoning, remainder = self._tag_pass(text)
        if reasoning is not None:
            return ReasoningSplit(reasoning, remainder.strip())

        # Empty tag pairs are dropped from the text even when they hold nothing.
        for patterns in (self._labeled, self._bracketed):
            split = self._block_pass(remainder, patterns)
            if split is not None:
                return split

        return ReasoningSplit(None, remainder.strip())

    def _tag_pass(self, text: str) -> tuple[str | None, str]:
        fragments: list[str] = []
        answer_parts: list[str] = []
        cursor = 0
        for match in self._paired_tag.finditer(text):
            answer_parts.append(text[cursor : match.start()])
            body = match.group("body").strip()
            if body:
                fragments.append(body)
            cursor = match.end()
        tail = text[cursor:]

        # An opening tag that leads the unpaired tail without its closing tag
        # means the stream is still inside the reasoning block.
        open_match = self._open_tag.match(tail)
        if open_match is not None:
            body = open_match.group("body").strip()
            if body:
                fragments.append(body)
            tail = tail[: open_match.start()]
        answer_parts.append(tail)

        remainder = "".join(answer_parts)
        if not fragments:
            return None, remainder
        return "\n\n".join(fragments), remainder

    @staticmethod
    def _block_pass(
        text: str,
        patterns: Sequence[tuple[re.Pattern[str], re.Pattern[str]]],
    ) -> ReasoningSplit | None:
        for opening, closing in patterns:
            start = opening.match(text)
            if start is None:
                continue
            body_start = start.end()
            end = closing.search(text, body_start)
            if end is None:
                reasoning = text[body_start:].strip()
                answer = ""
            else:
                reasoning = text[body_start : end.start()].strip()
                answer = text[end.end() :].strip()
            if reasoning:
                return ReasoningSplit(reasoning, answer)
        return None


_DEFAULT_EXTRACTOR = ReasoningExtractor()


def extract_reasoning(raw_text: Any) -> ReasoningSplit:
    """Split ``raw_text`` with the default pattern table."""
    return _DEFAULT_EXTRACTOR.extract(raw_text)
