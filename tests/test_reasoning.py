"""Tests for the reasoning/answer splitter."""

from __future__ import annotations

import unittest

from ollama_companion.reasoning import (
    BlockPattern,
    ReasoningExtractor,
    extract_reasoning,
)


class TagPassTests(unittest.TestCase):
    """Paired markup tags are the first and strongest signal."""

    def test_think_tag_split(self) -> None:
        split = extract_reasoning("<think>plan</think>Hello")
        self.assertEqual(split.reasoning, "plan")
        self.assertEqual(split.answer, "Hello")

    def test_multiple_tags_joined_in_document_order(self) -> None:
        split = extract_reasoning(
            "<think>first</think>Intro <reasoning>second</reasoning>Outro"
        )
        self.assertEqual(split.reasoning, "first\n\nsecond")
        self.assertEqual(split.answer, "Intro Outro")

    def test_tags_are_case_insensitive(self) -> None:
        split = extract_reasoning("<THINKING>\nweigh options\n</Thinking>\n\nDone.")
        self.assertEqual(split.reasoning, "weigh options")
        self.assertEqual(split.answer, "Done.")

    def test_spaced_and_hyphenated_tag_names(self) -> None:
        spaced = extract_reasoning("<internal thoughts>hmm</internal thoughts>Yes")
        hyphen = extract_reasoning("<internal-thoughts>hmm</internal-thoughts>Yes")
        self.assertEqual(spaced, ("hmm", "Yes"))
        self.assertEqual(hyphen, ("hmm", "Yes"))

    def test_unclosed_tag_streams_as_reasoning(self) -> None:
        split = extract_reasoning("<think>still working it out")
        self.assertEqual(split.reasoning, "still working it out")
        self.assertEqual(split.answer, "")

    def test_tag_mentioned_in_prose_is_left_in_the_answer(self) -> None:
        text = "Wrap hidden notes in a <think> tag so the UI can fold them."
        self.assertEqual(extract_reasoning(text), (None, text))

    def test_unclosed_tag_after_a_closed_pair_streams_as_reasoning(self) -> None:
        split = extract_reasoning("<think>one</think><think>two so far")
        self.assertEqual(split.reasoning, "one\n\ntwo so far")
        self.assertEqual(split.answer, "")

    def test_empty_tag_pair_is_dropped_without_reasoning(self) -> None:
        split = extract_reasoning("<think>   </think>Hi there")
        self.assertIsNone(split.reasoning)
        self.assertEqual(split.answer, "Hi there")

    def test_custom_tag_table(self) -> None:
        extractor = ReasoningExtractor(tag_names=("scratchpad",))
        self.assertEqual(
            extractor("<scratchpad>notes</scratchpad>Result"), ("notes", "Result")
        )
        # The default tags are not known to this extractor.
        self.assertEqual(extractor("<think>x</think>y"), (None, "<think>x</think>y"))


class BlockPassTests(unittest.TestCase):
    """Leading labels and bracket labels are used when no tags are present."""

    def test_bold_labels(self) -> None:
        split = extract_reasoning("**Thinking:** check the math **Answer:** 4")
        self.assertEqual(split.reasoning, "check the math")
        self.assertEqual(split.answer, "4")

    def test_plain_labels(self) -> None:
        split = extract_reasoning("Reasoning: 2 + 2 is 4\nResponse: The answer is 4.")
        self.assertEqual(split.reasoning, "2 + 2 is 4")
        self.assertEqual(split.answer, "The answer is 4.")

    def test_heading_labels(self) -> None:
        split = extract_reasoning("## Thinking\nstep one\n## Answer\nDone")
        self.assertEqual(split.reasoning, "step one")
        self.assertEqual(split.answer, "Done")

    def test_label_without_terminator_runs_to_end(self) -> None:
        split = extract_reasoning("**Thought:** I am not finished")
        self.assertEqual(split.reasoning, "I am not finished")
        self.assertEqual(split.answer, "")

    def test_bracket_labels(self) -> None:
        split = extract_reasoning("[Thinking] compare both [Response] Pick the first.")
        self.assertEqual(split.reasoning, "compare both")
        self.assertEqual(split.answer, "Pick the first.")

    def test_label_must_lead_the_text(self) -> None:
        text = "Sure. Thinking: is not a label here."
        self.assertEqual(extract_reasoning(text), (None, text))

    def test_prose_without_colon_is_not_a_label(self) -> None:
        text = "Thinking about it, yes."
        self.assertEqual(extract_reasoning(text), (None, text))

    def test_custom_block_pattern(self) -> None:
        extractor = ReasoningExtractor(
            labeled_patterns=(
                BlockPattern(name="analysis", opening=r"Analysis:", closing=r"Final:"),
            ),
            bracketed_patterns=(),
        )
        self.assertEqual(
            extractor("Analysis: weigh it Final: go"), ("weigh it", "go")
        )


class TotalityTests(unittest.TestCase):
    """Extraction never raises and is stable on its own output."""

    def test_none_and_empty(self) -> None:
        self.assertEqual(extract_reasoning(None), (None, ""))
        self.assertEqual(extract_reasoning(""), (None, ""))

    def test_plain_text_is_trimmed(self) -> None:
        self.assertEqual(extract_reasoning("  just an answer \n"), (None, "just an answer"))

    def test_non_string_input_is_coerced(self) -> None:
        self.assertEqual(extract_reasoning(42), (None, "42"))

    def test_idempotent_on_answer(self) -> None:
        for raw in (
            "<think>plan</think>Hello",
            "**Thinking:** a **Response:** b",
            "[Reasoning] x [Answer] y",
            "plain",
            "<think>a</think>Thinking: b",
            "<think>a</think>**Reasoning:** b **Answer:** c",
            "Thinking: a Response: [Thinking] b [Response] c",
            "<reflection>r</reflection>\n<think>s</think> done",
        ):
            answer = extract_reasoning(raw).answer
            self.assertEqual(extract_reasoning(answer), (None, answer), raw)

    def test_mixed_dialects_are_extracted_together(self) -> None:
        self.assertEqual(
            extract_reasoning("<think>a</think>Thinking: b Response: c"),
            ("a\n\nb", "c"),
        )
        self.assertEqual(extract_reasoning("<think>a</think>Thinking: b"), ("a\n\nb", ""))

    def test_prefixes_of_a_stream_never_raise(self) -> None:
        raw = "<think>step 1, step 2</think>**Final** answer: 42"
        for end in range(len(raw) + 1):
            split = extract_reasoning(raw[:end])
            self.assertIsInstance(split.answer, str)
        self.assertEqual(extract_reasoning(raw).answer, "**Final** answer: 42")


if __name__ == "__main__":
    unittest.main()
