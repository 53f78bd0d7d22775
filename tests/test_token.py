from llmserver.messages import Message, Role
from llmserver.token import estimate_messages_tokens, estimate_text_tokens


def test_empty_text_counts_one_token():
    assert estimate_text_tokens("") == 1


def test_four_chars_make_one_token():
    assert estimate_text_tokens("abcd") == 1


def test_partial_token_rounds_up():
    assert estimate_text_tokens("abcde") == estimate_text_tokens("abcdefgh")
    assert estimate_text_tokens("abcde") > estimate_text_tokens("abcd")


def test_counts_characters_not_bytes():
    assert estimate_text_tokens("éééé") == estimate_text_tokens("abcd")


def test_no_messages_counts_one_token():
    assert estimate_messages_tokens([]) == 1


def test_messages_sum_characters_before_rounding():
    messages = [Message(Role.USER, "ab"), Message(Role.ASSISTANT, "cd")]
    assert estimate_messages_tokens(messages) == estimate_text_tokens("abcd")


def test_array_content_and_missing_content():
    messages = [Message(Role.USER, ["abc", "def"]), Message(Role.SYSTEM, None)]
    assert estimate_messages_tokens(messages) == estimate_text_tokens("abcdef")