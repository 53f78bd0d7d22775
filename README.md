# llmserver

Building blocks for a server that hosts text and speech models. The package
uses only the standard library.

## Modules

- `llmserver.messages`: chat messages. `Message` holds an optional `Role`
  (`system`, `user`, `assistant`, `developer`) and optional content, which is
  a string or a list of strings. `Message.text()` joins list content into one
  string. `Message.to_dict()` / `Message.from_dict()` convert to and from
  JSON form. `OpenAiError` is the error body (`message`, `type`, `param`,
  `code`) used in error responses.
- `llmserver.utils`: `ModelType` (`LLM`, `ASR`, `TTS`) and `ModelConfig`.
  `ModelConfig.from_dict(data, asserts_path)` checks the fields and raises
  `ValueError` on bad input. `load_model_configs(directory="assets/config")`
  reads every `*.json` file in the directory, in name order, and returns the
  configurations keyed by `model_repo`.
- `llmserver.token`: rough token counts. `estimate_text_tokens(text)` and
  `estimate_messages_tokens(messages)` assume four characters per token,
  round up, and never return less than one.
- `llmserver.tts`: `SimpleToneTts` with `SimpleTtsConfig`. The defaults are
  16000 Hz, 180 ms per character and amplitude 0.35. `synthesize(text)`
  returns mono 16-bit PCM WAV bytes. Each character becomes a sine tone, whose
  frequency comes from `tone_for_character(ch, index)`. Whitespace becomes
  silence.
- `llmserver.state`: `HandleRegistry`, a thread-safe map from model names to
  `LlmHandle` / `AsrHandle` lists. It can replace, extend and remove the
  handles for a name, and list the registered names. `choose_llm` /
  `choose_asr` pick the processor of a random handle, or return `None` when
  there is none.
- `llmserver.manager`: `ModelManager`, an asyncio-based registry of running
  model instances.
  - It is built from a mapping of repository id to `ModelConfig`, plus an
    optional mapping of `ModelType` to a factory. A factory is a callable that
    takes a `ModelConfig` and returns a backend object.
  - Only a `TTS` factory (`SimpleToneTts`) is built in. Starting an `LLM` or
    `ASR` model without a factory raises `ActorError`.
  - `start_instances(repo_id, instances)` always starts at least one instance.
    It raises `UnknownModelError` when the repository has no configuration.
  - `stop_instance(instance_id)` raises `InstanceNotFoundError` when no
    instance has that id.
  - `llm_pool()`, `asr_pool()` and `tts_pool()` return the backends grouped by
    model name. `list_instances()` returns the `ModelInstance` objects.
  - `shutdown_all()` calls each backend's `shutdown()` if it has one (it may
    be async) and clears the registry.
- `llmserver.karma`: knowledge-graph enrichment.
  - `KarmaOrchestrator(llm_pool, config=None)` runs a planner agent, then one
    extractor agent per document. A validator agent then checks each
    candidate triple; by default at most 8 per document.
  - Accepted triples add nodes (matched by label, ignoring ASCII case) and
    edges to a copy of the graph.
  - A pool member is a callable that takes a list of `Message`. It returns
    (or awaits to) a string, or an iterable or async iterable of string
    chunks.
  - Failures raise `KarmaError`: no documents, an empty pool, a timeout
    (30 s by default), or a backend error.
  - `karma_enrich(payload, llm_pools)` handles a request. It returns an
    `HTTPStatus` and a JSON-ready dict, with `OpenAiError` bodies for bad
    requests.
  - `parse_agent_json`, `strip_json_code_fence` and `build_messages` are
    exposed as helpers.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Example

```python
from llmserver.tts import SimpleToneTts, SimpleTtsConfig

tts = SimpleToneTts(SimpleTtsConfig(model_name="tone"))
wav_bytes = tts.synthesize("hello world")
```

```python
from llmserver.token import estimate_text_tokens

estimate_text_tokens("abcdefgh")  # 2
```

```python
import asyncio
from llmserver.manager import ModelManager
from llmserver.utils import ModelConfig, ModelType

config = ModelConfig(model_repo="local/tone", model_name="tone", model_type=ModelType.TTS)
manager = ModelManager({"local/tone": config})

async def run():
    [instance] = await manager.start_instances("local/tone", 1)
    wav = instance.tts_recipient().synthesize("hi")
    await manager.shutdown_all()
    return wav

asyncio.run(run())
```

## What this package does not do

- It has no command-line program and no HTTP server. `karma_enrich` returns a
  status and body but is not mounted on any web framework.
- It contains no language-model or speech-recognition backend. Those must be
  supplied as factories to `ModelManager` or as callables to
  `KarmaOrchestrator`.
- The only speech synthesis is the tone generator in `llmserver.tts`.
- It keeps no database, user accounts, admin dashboard, encryption of secrets
  or model downloads. All state is held in memory.