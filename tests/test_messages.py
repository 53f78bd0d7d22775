import pytest

from llmserver.messages import Message, OpenAiError, Role


def test_role_values_match_wire_names():
    serialised = [Message(role=role).to_dict()["role"] for role in Role]
    assert serialised == ["system", "user", "assistant", "developer"]


def test_text_of_string_content():
    assert Message(Role.USER, "hello").text() == "hello"


def test_text_joins_array_parts():
    assert Message(Role.USER, ["ab", "cd"]).text() == "abcd"


def test_text_of_missing_content_is_empty():
    assert Message(Role.SYSTEM).text() == ""


def test_to_dict_skips_missing_fields():
    assert Message(content="x").to_dict() == {"content": "x"}
    assert Message(role=Role.ASSISTANT).to_dict() == {"role": "assistant"}
    assert Message().to_dict() == {}


@pytest.mark.parametrize(
    "message",
    [
        Message(Role.USER, "hi"),
        Message(Role.DEVELOPER, ["a", "b"]),
        Message(None, None),
        Message(Role.SYSTEM, None),
    ],
)
def test_round_trip(message):
    assert Message.from_dict(message.to_dict()) == message


def test_from_dict_rejects_unknown_role():
    with pytest.raises(ValueError):
        Message.from_dict({"role": "robot", "content": "x"})


def test_from_dict_rejects_bad_content():
    with pytest.raises(ValueError):
        Message.from_dict({"role": "user", "content": 5})
    with pytest.raises(ValueError):
        Message.from_dict({"role": "user", "content": ["a", 1]})


def test_openai_error_serialises_null_param():
    err = OpenAiError(
        message="Model name is required",
        type="invalid_request_error",
        code="model_not_found",
    )
    assert err.to_dict() == {
        "message": "Model name is required",
        "type": "invalid_request_error",
        "param": None,
        "code": "model_not_found",
    }