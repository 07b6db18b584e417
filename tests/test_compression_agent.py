from prompt_debugger.compression_agent import (
    EXAMPLE_CHAR_CAP,
    LIST_ELISION_MARKER,
    CompressionAgent,
    collapse_blank_lines,
    collapse_list_runs,
    truncate_examples,
)

LONG_PROMPT = """You are a support bot.

Rules:
- Greet the user.
- Ask for the order number.
- Check the order status.
- Offer a refund if late.
- Escalate angry users.
   
   


Example: """ + ("The user says their parcel is late and the bot apologises. " * 8) + """
Steps:
1. Read the question.
2) Pick a skill.
3. Run the skill.



* one
* two
* three
Closing line."""


def test_list_runs_longer_than_three_are_collapsed() -> None:
    out = collapse_list_runs("- a\n- b\n- c\n- d\n- e\nend")

    assert out == f"- a\n- b\n- c\n{LIST_ELISION_MARKER}\nend"


def test_list_runs_of_three_are_left_alone() -> None:
    text = "* one\n* two\n* three\ndone"

    assert collapse_list_runs(text) == text


def test_examples_are_capped_with_ellipsis() -> None:
    body = "x" * 500
    out = truncate_examples(f"Intro\nExample: {body}\nNext rule")

    assert out == f"Intro\nExample: {'x' * EXAMPLE_CHAR_CAP}...\nNext rule"


def test_short_examples_are_untouched() -> None:
    text = "Example: keep this one\nNext"

    assert truncate_examples(text) == text


def test_blank_lines_are_collapsed_and_whitespace_lines_emptied() -> None:
    assert collapse_blank_lines("a\n  \n\t\n\n\nb\n   \nc") == "a\n\nb\n\nc"


def test_compress_shrinks_long_prompt() -> None:
    out = CompressionAgent().compress(LONG_PROMPT)

    assert len(out) < len(LONG_PROMPT)
    assert LIST_ELISION_MARKER in out
    assert "\n\n\n" not in out
    assert "Closing line." in out


def test_compress_is_idempotent() -> None:
    agent = CompressionAgent()
    samples = [
        LONG_PROMPT,
        "",
        "plain text",
        "- a\n- b\n- c\n- d",
        "Example: " + "y" * 199 + "\n   \n\n\n" + "z" * 5,
        "Example: " + ("w  \n" * 80) + "End",
        "Example:\n  - a\n  - b\n  - c\n  - d\n  - e\n" + "q" * 300,
    ]

    for text in samples:
        once = agent.compress(text)
        assert agent.compress(once) == once


def test_failing_heuristic_is_skipped(caplog) -> None:
    agent = CompressionAgent()

    def broken(text):
        raise RuntimeError("bad pattern")

    agent.heuristics = (("broken", broken),) + agent.heuristics

    out = agent.compress("a\n\n\n\nb")

    assert out == "a\n\nb"
    assert "broken" in caplog.text
