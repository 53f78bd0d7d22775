import uuid

import pytest

from llmserver.manager import (
    ActorError,
    InstanceNotFoundError,
    ModelManager,
    ModelManagerError,
    UnknownModelError,
)
from llmserver.tts import SimpleToneTts
from llmserver.utils import ModelConfig, ModelType


class FakeBackend:
    def __init__(self, config):
        self.config = config
        self.shutdowns = 0

    def shutdown(self):
        self.shutdowns += 1


def make_configs():
    return {
        "org/llm": ModelConfig(model_repo="org/llm", model_name="chat", model_type=ModelType.LLM),
        "org/asr": ModelConfig(model_repo="org/asr", model_name="ears", model_type=ModelType.ASR),
        "org/tts": ModelConfig(model_repo="org/tts", model_name="voice", model_type=ModelType.TTS),
    }


def make_manager():
    return ModelManager(
        make_configs(),
        factories={ModelType.LLM: FakeBackend, ModelType.ASR: FakeBackend},
    )


@pytest.mark.asyncio
async def test_start_instances_registers_in_pool():
    manager = make_manager()
    started = await manager.start_instances("org/llm", 3)
    assert len(started) == 3
    assert len({i.id for i in started}) == 3
    pool = await manager.llm_pool()
    assert list(pool) == ["chat"]
    assert pool["chat"] == [i.backend for i in started]
    assert await manager.asr_pool() == {}


@pytest.mark.asyncio
async def test_zero_instances_starts_one():
    manager = make_manager()
    started = await manager.start_instances("org/asr", 0)
    assert len(started) == 1
    assert started[0].repo_id == "org/asr"
    assert started[0].model_name == "ears"
    assert started[0].model_type is ModelType.ASR


@pytest.mark.asyncio
async def test_unknown_repo_raises():
    manager = make_manager()
    with pytest.raises(UnknownModelError) as info:
        await manager.start_instances("nobody/nothing", 1)
    assert str(info.value) == "unknown model repo: nobody/nothing"
    assert isinstance(info.value, ModelManagerError)


@pytest.mark.asyncio
async def test_missing_factory_raises_actor_error():
    manager = ModelManager(make_configs())
    with pytest.raises(ActorError):
        await manager.start_instances("org/llm", 1)
    assert await manager.list_instances() == []


@pytest.mark.asyncio
async def test_failing_factory_raises_actor_error():
    def broken(config):
        raise RuntimeError("boom")

    manager = ModelManager(make_configs(), factories={ModelType.LLM: broken})
    with pytest.raises(ActorError) as info:
        await manager.start_instances("org/llm", 2)
    assert str(info.value) == "actor init error: boom"


@pytest.mark.asyncio
async def test_default_tts_backend_synthesizes():
    manager = ModelManager(make_configs())
    [instance] = await manager.start_instances("org/tts", 1)
    pool = await manager.tts_pool()
    backend = pool["voice"][0]
    assert isinstance(backend, SimpleToneTts)
    assert backend.synthesize("ab")[:4] == b"RIFF"
    assert instance.tts_recipient() is backend


@pytest.mark.asyncio
async def test_recipient_accessors_match_type():
    manager = make_manager()
    [llm] = await manager.start_instances("org/llm", 1)
    [asr] = await manager.start_instances("org/asr", 1)
    assert llm.llm_recipient() is llm.backend
    assert llm.asr_recipient() is None
    assert llm.tts_recipient() is None
    assert asr.asr_recipient() is asr.backend
    assert asr.llm_recipient() is None


@pytest.mark.asyncio
async def test_stop_instance_shuts_down_and_keeps_others():
    manager = make_manager()
    first, second = await manager.start_instances("org/llm", 2)
    await manager.stop_instance(first.id)
    assert first.backend.shutdowns == 1
    assert second.backend.shutdowns == 0
    pool = await manager.llm_pool()
    assert pool == {"chat": [second.backend]}


@pytest.mark.asyncio
async def test_stop_last_instance_removes_group():
    manager = make_manager()
    [only] = await manager.start_instances("org/asr", 1)
    await manager.stop_instance(only.id)
    assert await manager.asr_pool() == {}
    assert await manager.list_instances() == []
    with pytest.raises(InstanceNotFoundError):
        await manager.stop_instance(only.id)


@pytest.mark.asyncio
async def test_stop_unknown_instance_raises():
    manager = make_manager()
    with pytest.raises(InstanceNotFoundError) as info:
        await manager.stop_instance(uuid.uuid4())
    assert str(info.value) == "model instance not found"


@pytest.mark.asyncio
async def test_list_instances_orders_by_type():
    manager = make_manager()
    tts = await manager.start_instances("org/tts", 1)
    asr = await manager.start_instances("org/asr", 1)
    llm = await manager.start_instances("org/llm", 2)
    listed = await manager.list_instances()
    assert [i.id for i in listed] == [i.id for i in llm + asr + tts]


@pytest.mark.asyncio
async def test_configs_returns_copy():
    manager = make_manager()
    configs = await manager.configs()
    assert set(configs) == {"org/llm", "org/asr", "org/tts"}
    configs.clear()
    assert len(await manager.configs()) == 3


@pytest.mark.asyncio
async def test_shutdown_all_clears_everything():
    manager = make_manager()
    llm = await manager.start_instances("org/llm", 2)
    asr = await manager.start_instances("org/asr", 1)
    await manager.shutdown_all()
    assert all(i.backend.shutdowns == 1 for i in llm + asr)
    assert await manager.list_instances() == []
    assert await manager.llm_pool() == {}
    with pytest.raises(InstanceNotFoundError):
        await manager.stop_instance(llm[0].id)