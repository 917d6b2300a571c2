from chatbridge.core.models import MessageRecord
from chatbridge.core.text import extract_chat_text


def is_duplicate_content(left_name: str, left_raw: str, right_name: str, right_raw: str) -> bool:
    if left_name != right_name:
        return False
    left_text = extract_chat_text(left_raw)
    # unparseable content has no comparable text
    return bool(left_text) and left_text == extract_chat_text(right_raw)


def is_duplicate_record(left: MessageRecord, right: MessageRecord) -> bool:
    if left.id == right.id:
        return False
    if left.author_display_name != right.author_display_name:
        return False
    left_text = left.chat_text
    return bool(left_text) and left_text == right.chat_text


def newer_of(left: MessageRecord, right: MessageRecord) -> MessageRecord:
    """Pick the record to delete from a duplicate pair.

    The earlier message is the canonical copy. On equal timestamps ``right``
    is treated as the later one, so callers pass pairs in insertion order.
    """
    if left.sent_at > right.sent_at:
        return left
    return right
