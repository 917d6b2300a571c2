import re


# prefix, optional emphasis, [slug], same emphasis, one space, payload
CHAT_TEXT_RE = re.compile(
    r"(?P<prefix>.*?)"
    r"(?P<emphasis>\*\*|\*|__|_|)"
    r"(?P<slug>\[[^\[\]\n]+\])"
    r"(?P=emphasis) "
    r"(?P<text>.+)",
    re.DOTALL,
)


def extract_chat_text(raw_content: str) -> str:
    if not raw_content:
        return ""
    match = CHAT_TEXT_RE.match(raw_content)
    if match is None:
        return ""
    return match.group("text")


def format_chat_message(text: str, slug: str, prefix: str = "", emphasis: str = "**") -> str:
    return f"{prefix}{emphasis}[{slug}]{emphasis} {text}"
