"""Knowledge-graph enrichment driven by planner, extractor and validator agents."""

from __future__ import annotations

import asyncio
import inspect
import json
import random
import string
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from http import HTTPStatus
from typing import Any, Optional, TypeVar, Union

from llmserver.messages import Message, OpenAiError, Role

DEFAULT_TIMEOUT_SECS = 30
DEFAULT_MAX_CANDIDATES = 8

LlmBackend = Callable[[list[Message]], Any]
T = TypeVar("T")

_ASCII_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)


def _ascii_lower(text: str) -> str:
    return text.translate(_ASCII_LOWER)


def _require_dict(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be an object")
    return data


def _req_str(data: dict[str, Any], key: str) -> str:
    if key not in data:
        raise ValueError(f"missing field `{key}`")
    value = data[key]
    if not isinstance(value, str):
        raise ValueError(f"field `{key}` must be a string")
    return value


def _opt_str(data: dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"field `{key}` must be a string")
    return value


def _default_str(data: dict[str, Any], key: str) -> str:
    return _req_str(data, key) if key in data else ""


def _number(value: Any, key: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"field `{key}` must be a number")
    return float(value)


def _str_map(data: dict[str, Any], key: str) -> dict[str, str]:
    if key not in data:
        return {}
    value = data[key]
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        raise ValueError(f"field `{key}` must map strings to strings")
    return dict(value)


def _str_list(data: dict[str, Any], key: str) -> list[str]:
    if key not in data:
        return []
    value = data[key]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"field `{key}` must be an array of strings")
    return list(value)


def _object_list(data: dict[str, Any], key: str, build: Callable[[Any], T]) -> list[T]:
    if key not in data:
        return []
    value = data[key]
    if not isinstance(value, list):
        raise ValueError(f"field `{key}` must be an array")
    return [build(item) for item in value]


@dataclass
class KnowledgeGraphNode:
    id: str
    label: str
    properties: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "label": self.label, "properties": dict(self.properties)}

    @classmethod
    def from_dict(cls, data: Any) -> "KnowledgeGraphNode":
        data = _require_dict(data, "node")
        return cls(
            id=_req_str(data, "id"),
            label=_req_str(data, "label"),
            properties=_str_map(data, "properties"),
        )


@dataclass
class KnowledgeGraphEdge:
    id: str
    source: str
    target: str
    relation: str
    properties: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "relation": self.relation,
            "properties": dict(self.properties),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "KnowledgeGraphEdge":
        data = _require_dict(data, "edge")
        return cls(
            id=_req_str(data, "id"),
            source=_req_str(data, "source"),
            target=_req_str(data, "target"),
            relation=_req_str(data, "relation"),
            properties=_str_map(data, "properties"),
        )


@dataclass
class KnowledgeGraph:
    nodes: list[KnowledgeGraphNode] = field(default_factory=list)
    edges: list[KnowledgeGraphEdge] = field(default_factory=list)

    def _next_node_id(self) -> str:
        return f"node-{len(self.nodes) + 1}"

    def _next_edge_id(self) -> str:
        return f"edge-{len(self.edges) + 1}"

    def find_node_by_label(self, label: str) -> Optional[KnowledgeGraphNode]:
        """First node whose label matches, ignoring ASCII case."""
        wanted = _ascii_lower(label)
        return next((n for n in self.nodes if _ascii_lower(n.label) == wanted), None)

    def ensure_node(
        self, label: str, metadata: Mapping[str, str]
    ) -> tuple[KnowledgeGraphNode, bool]:
        """Return the node with this label, creating it if needed; the flag tells which."""
        existing = self.find_node_by_label(label)
        if existing is not None:
            return existing, False
        properties = dict(metadata)
        properties.setdefault("label", label)
        node = KnowledgeGraphNode(id=self._next_node_id(), label=label, properties=properties)
        self.nodes.append(node)
        return node, True

    def add_edge(
        self,
        source: KnowledgeGraphNode,
        target: KnowledgeGraphNode,
        relation: str,
        metadata: Mapping[str, str],
    ) -> KnowledgeGraphEdge:
        edge = KnowledgeGraphEdge(
            id=self._next_edge_id(),
            source=source.id,
            target=target.id,
            relation=relation,
            properties=dict(metadata),
        )
        self.edges.append(edge)
        return edge

    def as_prompt_context(self) -> str:
        """Pretty-printed JSON of the graph for inclusion in prompts."""
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "KnowledgeGraph":
        data = _require_dict(data, "graph")
        return cls(
            nodes=_object_list(data, "nodes", KnowledgeGraphNode.from_dict),
            edges=_object_list(data, "edges", KnowledgeGraphEdge.from_dict),
        )


class KarmaVerdict(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    NEEDS_CLARIFICATION = "needs_clarification"


class KarmaAgentKind(str, Enum):
    PLANNER = "planner"
    EXTRACTOR = "extractor"
    VALIDATOR = "validator"

    def __str__(self) -> str:
        return self.value


@dataclass
class KarmaCandidateTriple:
    subject: str = ""
    predicate: str = ""
    object: str = ""
    justification: str = ""
    confidence: float = 0.0
    metadata: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "predicate": self.predicate,
            "object": self.object,
            "justification": self.justification,
            "confidence": self.confidence,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "KarmaCandidateTriple":
        data = _require_dict(data, "triple")
        return cls(
            subject=_req_str(data, "subject"),
            predicate=_req_str(data, "predicate"),
            object=_req_str(data, "object"),
            justification=_default_str(data, "justification"),
            confidence=_number(data["confidence"], "confidence") if "confidence" in data else 0.0,
            metadata=_str_map(data, "metadata"),
        )


@dataclass
class KarmaExtractorOutput:
    candidates: list[KarmaCandidateTriple] = field(default_factory=list)
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"candidates": [c.to_dict() for c in self.candidates], "notes": self.notes}

    @classmethod
    def from_dict(cls, data: Any) -> "KarmaExtractorOutput":
        data = _require_dict(data, "extractor output")
        return cls(
            candidates=_object_list(data, "candidates", KarmaCandidateTriple.from_dict),
            notes=_default_str(data, "notes"),
        )


@dataclass
class KarmaValidatorDecision:
    verdict: KarmaVerdict = KarmaVerdict.NEEDS_CLARIFICATION
    confidence: float = 0.0
    explanation: str = ""
    triple: KarmaCandidateTriple = field(default_factory=KarmaCandidateTriple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "confidence": self.confidence,
            "explanation": self.explanation,
            "triple": self.triple.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "KarmaValidatorDecision":
        data = _require_dict(data, "validator decision")
        for key in ("verdict", "confidence", "triple"):
            if key not in data:
                raise ValueError(f"missing field `{key}`")
        return cls(
            verdict=KarmaVerdict(data["verdict"]),
            confidence=_number(data["confidence"], "confidence"),
            explanation=_default_str(data, "explanation"),
            triple=KarmaCandidateTriple.from_dict(data["triple"]),
        )


@dataclass
class KarmaPlannerOutput:
    objective: str = ""
    tasks: list[str] = field(default_factory=list)
    success_metrics: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "objective": self.objective,
            "tasks": list(self.tasks),
            "success_metrics": list(self.success_metrics),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "KarmaPlannerOutput":
        data = _require_dict(data, "plan")
        return cls(
            objective=_req_str(data, "objective"),
            tasks=_str_list(data, "tasks"),
            success_metrics=_str_list(data, "success_metrics"),
        )


@dataclass
class KarmaAgentLog:
    agent: KarmaAgentKind
    prompt: str
    response: str
    timestamp_ms: int
    parsed_successfully: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent": self.agent.value,
            "prompt": self.prompt,
            "response": self.response,
            "timestamp_ms": self.timestamp_ms,
            "parsed_successfully": self.parsed_successfully,
        }


@dataclass
class KarmaRejectedCandidate:
    candidate: KarmaCandidateTriple
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"candidate": self.candidate.to_dict(), "reason": self.reason}


@dataclass
class KarmaEnrichmentRequest:
    model: str
    graph: KnowledgeGraph
    documents: list[str] = field(default_factory=list)
    goal: Optional[str] = None
    instructions: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "KarmaEnrichmentRequest":
        data = _require_dict(data, "request")
        if "graph" not in data:
            raise ValueError("missing field `graph`")
        return cls(
            model=_req_str(data, "model"),
            graph=KnowledgeGraph.from_dict(data["graph"]),
            documents=_str_list(data, "documents"),
            goal=_opt_str(data, "goal"),
            instructions=_opt_str(data, "instructions"),
        )


@dataclass
class KarmaEnrichmentResponse:
    plan: Optional[KarmaPlannerOutput]
    updated_graph: KnowledgeGraph
    new_nodes: list[KnowledgeGraphNode] = field(default_factory=list)
    new_edges: list[KnowledgeGraphEdge] = field(default_factory=list)
    accepted_candidates: list[KarmaCandidateTriple] = field(default_factory=list)
    rejected_candidates: list[KarmaRejectedCandidate] = field(default_factory=list)
    agent_logs: list[KarmaAgentLog] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": None if self.plan is None else self.plan.to_dict(),
            "updated_graph": self.updated_graph.to_dict(),
            "new_nodes": [n.to_dict() for n in self.new_nodes],
            "new_edges": [e.to_dict() for e in self.new_edges],
            "accepted_candidates": [c.to_dict() for c in self.accepted_candidates],
            "rejected_candidates": [r.to_dict() for r in self.rejected_candidates],
            "agent_logs": [log.to_dict() for log in self.agent_logs],
        }


@dataclass
class KarmaConfig:
    request_timeout_secs: float = DEFAULT_TIMEOUT_SECS
    max_candidates_per_document: int = DEFAULT_MAX_CANDIDATES


class KarmaError(Exception):
    """Enrichment could not be carried out."""


def build_messages(
    system_prompt: Optional[str], developer_prompt: Optional[str], user_prompt: str
) -> list[Message]:
    """System and developer messages when given, then the user message."""
    messages = []
    if system_prompt is not None:
        messages.append(Message(role=Role.SYSTEM, content=system_prompt))
    if developer_prompt is not None:
        messages.append(Message(role=Role.DEVELOPER, content=developer_prompt))
    messages.append(Message(role=Role.USER, content=user_prompt))
    return messages


def strip_json_code_fence(text: str) -> str:
    """Remove a surrounding Markdown code fence, if any."""
    trimmed = text.strip()
    if not trimmed.startswith("```"):
        return trimmed
    collected = []
    for line in trimmed.split("\n")[1:]:
        line = line.removesuffix("\r")
        if line.lstrip().startswith("```"):
            break
        collected.append(line)
    return "\n".join(collected)


def parse_agent_json(raw: str) -> Any:
    """Pull the JSON value out of an agent reply; None when there is none."""
    trimmed = raw.strip()
    if not trimmed:
        return None
    if trimmed.startswith(("{", "[")):
        candidate = trimmed
    else:
        for opener, closer in (("{", "}"), ("[", "]")):
            start = trimmed.find(opener)
            if start != -1:
                end = trimmed.rfind(closer)
                if end == -1:
                    return None
                candidate = trimmed[start : end + 1]
                break
        else:
            return None
    try:
        return json.loads(strip_json_code_fence(candidate))
    except ValueError:
        return None


def _parse_as(raw: str, build: Callable[[Any], T]) -> Optional[T]:
    value = parse_agent_json(raw)
    if value is None:
        return None
    try:
        return build(value)
    except (ValueError, TypeError, KeyError):
        return None


def _timestamp_ms() -> int:
    return time.time_ns() // 1_000_000


async def _request_stream(backend: LlmBackend, messages: list[Message]) -> Any:
    result = backend(messages)
    if inspect.isawaitable(result):
        result = await result
    return result


async def _collect(stream: Any) -> str:
    if isinstance(stream, str):
        return stream
    if hasattr(stream, "__aiter__"):
        return "".join([chunk async for chunk in stream])
    return "".join(stream)


class KarmaOrchestrator:
    """Runs the planner, extractor and validator agents over a pool of models."""

    def __init__(
        self,
        llm_pool: Sequence[LlmBackend],
        config: Optional[KarmaConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.llm_pool = list(llm_pool)
        self.config = config or KarmaConfig()
        self._rng = rng or random.Random()

    async def enrich(self, request: KarmaEnrichmentRequest) -> KarmaEnrichmentResponse:
        """Enrich the request's graph from its documents."""
        if not request.documents:
            raise KarmaError("No documents provided for enrichment")

        graph = KnowledgeGraph.from_dict(request.graph.to_dict())
        response = KarmaEnrichmentResponse(plan=None, updated_graph=graph)

        plan, log = await self._planner_step(graph, request.goal, request.instructions)
        response.agent_logs.append(log)
        response.plan = plan

        for doc_index, document in enumerate(request.documents):
            extracted, log = await self._extractor_step(
                graph, document, request.goal, request.instructions
            )
            response.agent_logs.append(log)
            candidates = (extracted or KarmaExtractorOutput()).candidates
            candidates = candidates[: self.config.max_candidates_per_document]

            for candidate in candidates:
                decision, log = await self._validator_step(graph, candidate, document, doc_index)
                response.agent_logs.append(log)
                if decision is None:
                    response.rejected_candidates.append(
                        KarmaRejectedCandidate(
                            candidate=candidate,
                            reason="Validator agent returned an unparsable response",
                        )
                    )
                elif decision.verdict is KarmaVerdict.ACCEPT:
                    triple = decision.triple
                    subject, subject_created = graph.ensure_node(triple.subject, triple.metadata)
                    obj, object_created = graph.ensure_node(triple.object, triple.metadata)
                    if subject_created:
                        response.new_nodes.append(subject)
                    if object_created:
                        response.new_nodes.append(obj)
                    response.new_edges.append(
                        graph.add_edge(subject, obj, triple.predicate, triple.metadata)
                    )
                    response.accepted_candidates.append(triple)
                else:
                    response.rejected_candidates.append(
                        KarmaRejectedCandidate(candidate=decision.triple, reason=decision.explanation)
                    )
        return response

    async def _planner_step(
        self, graph: KnowledgeGraph, goal: Optional[str], instructions: Optional[str]
    ) -> tuple[Optional[KarmaPlannerOutput], KarmaAgentLog]:
        parts = [
            "You are KARMA's planning agent. You orchestrate knowledge graph enrichment.\n",
            "Review the current knowledge graph snapshot and derive a plan. Respond strictly in "
            "JSON with keys objective, tasks (array) and success_metrics (array).\n",
        ]
        if goal is not None:
            parts.append(f"Enrichment goal: {goal}\n")
        if instructions is not None:
            parts.append(f"Operator instructions: {instructions}\n")
        parts += ["Current graph snapshot (JSON):\n", graph.as_prompt_context()]
        prompt = "".join(parts)
        return await self._run(
            KarmaAgentKind.PLANNER, prompt, "Return the JSON plan now.", KarmaPlannerOutput.from_dict
        )

    async def _extractor_step(
        self,
        graph: KnowledgeGraph,
        document: str,
        goal: Optional[str],
        instructions: Optional[str],
    ) -> tuple[Optional[KarmaExtractorOutput], KarmaAgentLog]:
        parts = [
            "You are KARMA's extraction agent.\n",
            "Identify candidate triples that enrich the knowledge graph. Use the provided document "
            "and respond in JSON with fields candidates (array) and notes (string). Each candidate "
            "must include subject, predicate, object, justification, confidence (0-1), and "
            "metadata (object).\n",
        ]
        if goal is not None:
            parts.append(f"Goal: {goal}\n")
        if instructions is not None:
            parts.append(f"Additional instructions: {instructions}\n")
        parts += [
            "Current graph snapshot: ",
            graph.as_prompt_context(),
            "\nDocument:\n",
            document,
        ]
        return await self._run(
            KarmaAgentKind.EXTRACTOR,
            "".join(parts),
            "Return only JSON following the schema.",
            KarmaExtractorOutput.from_dict,
        )

    async def _validator_step(
        self,
        graph: KnowledgeGraph,
        candidate: KarmaCandidateTriple,
        document: str,
        doc_index: int,
    ) -> tuple[Optional[KarmaValidatorDecision], KarmaAgentLog]:
        prompt = "".join(
            [
                "You are KARMA's validation agent.\n",
                "Decide if the proposed triple is correct and should be added to the knowledge "
                "graph. Respond strictly in JSON with keys verdict (accept|reject|"
                "needs_clarification), confidence (0-1), explanation, and triple.\n",
                "Current graph snapshot: ",
                graph.as_prompt_context(),
                "\nCandidate triple JSON:\n",
                json.dumps(candidate.to_dict(), indent=2, ensure_ascii=False),
                f"\nSupporting document #{doc_index + 1}:\n",
                document,
            ]
        )
        return await self._run(
            KarmaAgentKind.VALIDATOR,
            prompt,
            "Return the validation JSON now.",
            KarmaValidatorDecision.from_dict,
        )

    async def _run(
        self,
        agent: KarmaAgentKind,
        prompt: str,
        user_prompt: str,
        build: Callable[[Any], T],
    ) -> tuple[Optional[T], KarmaAgentLog]:
        raw = await self._call_agent(agent, build_messages(prompt, None, user_prompt))
        parsed = _parse_as(raw, build)
        log = KarmaAgentLog(
            agent=agent,
            prompt=prompt,
            response=raw,
            timestamp_ms=_timestamp_ms(),
            parsed_successfully=parsed is not None,
        )
        return parsed, log

    async def _call_agent(self, agent: KarmaAgentKind, messages: list[Message]) -> str:
        if not self.llm_pool:
            raise KarmaError("Model pool is empty")
        backend = self._rng.choice(self.llm_pool)
        timeout = self.config.request_timeout_secs
        try:
            stream = await asyncio.wait_for(_request_stream(backend, messages), timeout)
        except asyncio.TimeoutError as exc:
            raise KarmaError(f"{agent} agent timed out after {timeout} seconds") from exc
        except Exception as exc:
            raise KarmaError(f"{agent} agent mailbox error: {exc}") from exc
        if stream is None:
            raise KarmaError(f"{agent} agent returned an empty stream")
        return await _collect(stream)


def _bad_request(message: str, code: str) -> tuple[HTTPStatus, dict[str, Any]]:
    error = OpenAiError(message=message, type="invalid_request_error", code=code)
    return HTTPStatus.BAD_REQUEST, error.to_dict()


async def karma_enrich(
    payload: Union[KarmaEnrichmentRequest, Mapping[str, Any]],
    llm_pools: Mapping[str, Sequence[LlmBackend]],
) -> tuple[HTTPStatus, dict[str, Any]]:
    """Handle an enrichment request; returns the status and the JSON body.

    A payload given as a mapping that does not describe a request raises ValueError.
    """
    request = (
        payload
        if isinstance(payload, KarmaEnrichmentRequest)
        else KarmaEnrichmentRequest.from_dict(dict(payload))
    )
    if not request.model.strip():
        return _bad_request("Model name is required", "model_not_found")
    pool = llm_pools.get(request.model)
    if pool is None:
        return _bad_request(
            f"The model {request.model} does not exist or you do not have access to it.",
            "model_not_found",
        )
    try:
        response = await KarmaOrchestrator(pool).enrich(request)
    except KarmaError as exc:
        return _bad_request(str(exc), "karma_enrichment_failed")
    return HTTPStatus.OK, response.to_dict()