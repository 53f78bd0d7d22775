import random

from llmserver.state import AsrHandle, HandleRegistry, LlmHandle


def _llm(name):
    return LlmHandle(processor=f"{name}-proc", shutdown=f"{name}-stop")


def _asr(name):
    return AsrHandle(processor=f"{name}-proc", shutdown=f"{name}-stop")


def test_register_llm_replaces_existing():
    registry = HandleRegistry()
    registry.register_llm("m", [_llm("a"), _llm("b")])
    registry.register_llm("m", [_llm("c")])
    assert registry.remove_llm("m") == [_llm("c")]


def test_add_llm_instances_appends():
    registry = HandleRegistry()
    registry.add_llm_instances("m", [_llm("a")])
    registry.add_llm_instances("m", [_llm("b")])
    assert registry.remove_llm("m") == [_llm("a"), _llm("b")]


def test_remove_deletes_model():
    registry = HandleRegistry()
    registry.register_llm("m", [_llm("a")])
    registry.remove_llm("m")
    assert registry.list_llm_models() == []
    assert registry.remove_llm("m") == []


def test_choose_missing_model_is_none():
    registry = HandleRegistry()
    assert registry.choose_llm("absent") is None
    assert registry.choose_asr("absent") is None


def test_choose_empty_list_is_none():
    registry = HandleRegistry()
    registry.register_llm("m", [])
    assert registry.choose_llm("m") is None


def test_choose_returns_a_registered_processor():
    registry = HandleRegistry(rng=random.Random(7))
    handles = [_llm("a"), _llm("b"), _llm("c")]
    registry.register_llm("m", handles)
    chosen = {registry.choose_llm("m") for _ in range(50)}
    assert chosen <= {h.processor for h in handles}
    assert len(chosen) > 1


def test_asr_registry_is_separate():
    registry = HandleRegistry()
    registry.register_asr("voice", [_asr("a")])
    registry.add_asr_instances("voice", [_asr("b")])
    registry.register_llm("chat", [_llm("x")])
    assert registry.list_asr_models() == ["voice"]
    assert registry.list_llm_models() == ["chat"]
    assert registry.choose_asr("voice") in {"a-proc", "b-proc"}
    assert registry.remove_asr("voice") == [_asr("a"), _asr("b")]
    assert registry.remove_asr("voice") == []


def test_list_models_in_registration_order():
    registry = HandleRegistry()
    registry.register_llm("first", [_llm("a")])
    registry.add_llm_instances("second", [_llm("b")])
    assert registry.list_llm_models() == ["first", "second"]