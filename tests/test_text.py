import pytest

from chatbridge.core.text import extract_chat_text, format_chat_message


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("[World] hello", "hello"),
        ("**[Say]** hi there", "hi there"),
        ("*[Shout]* loud", "loud"),
        ("__[FC]__ grats", "grats"),
        ("> **[Tell]** psst", "psst"),
        ("[Say] see [this] link", "see [this] link"),
        ("[Say] first line\nsecond line", "first line\nsecond line"),
    ],
)
def test_extract_chat_text(raw: str, expected: str) -> None:
    assert extract_chat_text(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["", "hello", "[World]hello", "[World] ", "[] empty slug"],
)
def test_extract_chat_text_miss_is_empty(raw: str) -> None:
    assert extract_chat_text(raw) == ""


@pytest.mark.parametrize("emphasis", ["", "*", "**", "_", "__"])
@pytest.mark.parametrize("prefix", ["", "xl! ", "> "])
def test_formatted_message_recovers_text(prefix: str, emphasis: str) -> None:
    text = "Looking for 2 more for the raid, anyone?"
    raw = format_chat_message(text, "Shout", prefix=prefix, emphasis=emphasis)
    assert extract_chat_text(raw) == text


def test_format_chat_message_layout() -> None:
    assert format_chat_message("hello", "Say") == "**[Say]** hello"
    assert format_chat_message("hello", "FC", prefix="> ", emphasis="") == "> [FC] hello"
