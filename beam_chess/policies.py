"""Turn policies, how a computer-controlled piece picks its destination.

``RandomPolicy`` is the baseline. ``OpenAIPolicy`` and ``AnthropicPolicy``
ask a model to pick through a single tool call.
"""

from __future__ import annotations

import json
import os
import random
import time
from collections.abc import Collection
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from beam_chess.board import Board, Player, Space, render
from beam_chess.tools import TOOL_SCHEMAS, validate_choice

MAX_ATTEMPTS_PER_TURN = 3  # safety valve against a model that never picks a legal space


@runtime_checkable
class TurnPolicy(Protocol):
    """Structural interface: any object with these members works."""

    @property
    def name(self) -> str: ...

    @property
    def last_invocation(self) -> PolicyInvocation | None: ...

    def choose(self, player: Player, candidates: Collection[Space], board: Board) -> Space | None: ...


# ── Baseline ─────────────────────────────────────────────────────────

class RandomPolicy:
    """Uniform choice among legal destinations, reproducible under a seed."""

    def __init__(self, seed: int | None = None):
        self._rng = random.Random(seed)

    @property
    def name(self) -> str:
        return "random"

    @property
    def last_invocation(self) -> PolicyInvocation | None:
        return None

    def choose(self, player: Player, candidates: Collection[Space], board: Board) -> Space | None:
        if not candidates:
            return None
        return self._rng.choice(sorted(candidates))


# ── Prompting ────────────────────────────────────────────────────────

SYSTEM_PROMPT = """\
You control a piece on a square grid board. Spaces are written (up, across).

Rules:
- Each turn you move one space up, down, left or right onto a free space.
- Eyes (E) cast a beam along their row in both directions.
- The beam stops at the first Blocker (B) it hits. Pieces behind the Blocker are shielded.
- Every Pawn (P) or Eye standing in the beam is removed.
- A Blocker is safe while any Pawn is on the board. Once the Pawns are gone, a Blocker hit by the beam is removed too.
- The game ends when only one piece is left.

On the board, '*' marks a visible beam and '+' marks your legal destinations.
Call move_piece_to_space with one of the legal destinations.
You may call plan first to think step-by-step. It has no side effects.
"""


def describe_turn(player: Player, candidates: Collection[Space], board: Board) -> str:
    legal = ", ".join(f"({u}, {a})" for u, a in sorted(candidates))
    return (
        f"Your turn. You are the {player.kind.value} '{player.name}' on "
        f"({player.position[0]}, {player.position[1]}).\n\n"
        f"{render(board)}\n\n"
        f"Legal destinations: {legal}."
    )


# ── Invocation capture ───────────────────────────────────────────────

@dataclass
class ModelCall:
    """One request/response round trip inside a turn."""

    response_raw: dict = field(default_factory=dict)
    tool_name: str = ""
    args: dict = field(default_factory=dict)
    call_id: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    latency_ms: int = 0


@dataclass
class PolicyInvocation:
    """What a model was shown and answered while choosing one destination."""

    model_api_id: str
    request_messages: list[dict] = field(default_factory=list)  # as last sent
    calls: list[ModelCall] = field(default_factory=list)
    chosen: Space | None = None

    @property
    def attempts(self) -> int:
        return len(self.calls)

    @property
    def input_tokens(self) -> int | None:
        counts = [c.input_tokens for c in self.calls if c.input_tokens is not None]
        return sum(counts) if counts else None

    @property
    def output_tokens(self) -> int | None:
        counts = [c.output_tokens for c in self.calls if c.output_tokens is not None]
        return sum(counts) if counts else None


def _to_json_safe(obj: Any) -> Any:
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if isinstance(obj, dict):
        return {k: _to_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_to_json_safe(v) for v in obj]
    return obj


class _ModelPolicy:
    """Ask, validate, feed the error back, retry.

    Every turn opens a fresh conversation: the observation already carries
    the whole board, so nothing from earlier turns is needed and the
    history stays bounded by ``MAX_ATTEMPTS_PER_TURN``.
    """

    model: str
    display_name: str
    _messages: list[dict]
    _last_invocation: PolicyInvocation | None

    @property
    def name(self) -> str:
        return self.display_name

    @property
    def last_invocation(self) -> PolicyInvocation | None:
        return self._last_invocation

    def choose(self, player: Player, candidates: Collection[Space], board: Board) -> Space | None:
        self._last_invocation = None
        if not candidates:
            return None
        messages = self._open(describe_turn(player, candidates, board))
        invocation = PolicyInvocation(model_api_id=self.model)
        self._messages = messages
        self._last_invocation = invocation

        for _ in range(MAX_ATTEMPTS_PER_TURN):
            invocation.request_messages = _to_json_safe(messages)
            t0 = time.monotonic()
            response = self._send(messages)
            call = self._read(response, messages)
            call.latency_ms = int((time.monotonic() - t0) * 1000)
            invocation.calls.append(call)

            result = validate_choice(call.tool_name, call.args, candidates)
            messages.append(self._reply(call, result.message))
            if result.ok:
                invocation.chosen = result.space
                return result.space
        return None

    def _open(self, observation: str) -> list[dict]:
        raise NotImplementedError

    def _send(self, messages: list[dict]) -> Any:
        raise NotImplementedError

    def _read(self, response: Any, messages: list[dict]) -> ModelCall:
        """Record the reply in *messages*, keeping at most one tool call."""
        raise NotImplementedError

    def _reply(self, call: ModelCall, message: str) -> dict:
        raise NotImplementedError


# ── OpenAI-compatible policy (works for OpenAI + OpenRouter) ─────────

@dataclass
class OpenAIPolicy(_ModelPolicy):
    """Policy backed by any OpenAI-compatible chat/completions API."""

    model: str
    display_name: str
    api_key: str | None = None
    base_url: str | None = None
    _messages: list[dict] = field(default_factory=list, repr=False)
    _client: object = field(default=None, repr=False)
    _last_invocation: PolicyInvocation | None = field(default=None, repr=False)

    def _get_client(self):
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    def _open(self, observation: str) -> list[dict]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": observation},
        ]

    def _send(self, messages: list[dict]) -> Any:
        return self._get_client().chat.completions.create(
            model=self.model,
            messages=messages,
            tools=TOOL_SCHEMAS,
            tool_choice="required",
        )

    def _read(self, response: Any, messages: list[dict]) -> ModelCall:
        msg = response.choices[0].message
        usage = getattr(response, "usage", None)
        call = ModelCall(
            response_raw=response.model_dump() if hasattr(response, "model_dump") else {},
            input_tokens=getattr(usage, "prompt_tokens", None),
            output_tokens=getattr(usage, "completion_tokens", None),
        )

        assistant = msg.model_dump(exclude_none=True)
        if assistant.get("tool_calls"):
            assistant["tool_calls"] = assistant["tool_calls"][:1]
        messages.append(assistant)

        if msg.tool_calls:
            tc = msg.tool_calls[0]
            call.tool_name, call.call_id = tc.function.name, tc.id
            try:
                call.args = json.loads(tc.function.arguments) if tc.function.arguments else {}
            except json.JSONDecodeError:
                call.args = {}
        return call

    def _reply(self, call: ModelCall, message: str) -> dict:
        if call.call_id is not None:
            return {"role": "tool", "tool_call_id": call.call_id, "content": message}
        return {"role": "user", "content": message}


# ── Anthropic policy ─────────────────────────────────────────────────

ANTHROPIC_TOOLS: list[dict] = [
    {
        "name": t["function"]["name"],
        "description": t["function"]["description"],
        "input_schema": t["function"]["parameters"],
    }
    for t in TOOL_SCHEMAS
]


@dataclass
class AnthropicPolicy(_ModelPolicy):
    """Policy backed by Anthropic's messages API."""

    model: str
    display_name: str
    api_key: str | None = None
    _messages: list[dict] = field(default_factory=list, repr=False)
    _client: object = field(default=None, repr=False)
    _last_invocation: PolicyInvocation | None = field(default=None, repr=False)

    def _get_client(self):
        if self._client is None:
            from anthropic import Anthropic
            self._client = Anthropic(api_key=self.api_key)
        return self._client

    def _open(self, observation: str) -> list[dict]:
        return [{"role": "user", "content": [{"type": "text", "text": observation}]}]

    def _send(self, messages: list[dict]) -> Any:
        return self._get_client().messages.create(
            model=self.model,
            max_tokens=1024,
            system=SYSTEM_PROMPT,
            messages=messages,
            tools=ANTHROPIC_TOOLS,
            tool_choice={"type": "any"},
        )

    def _read(self, response: Any, messages: list[dict]) -> ModelCall:
        usage = getattr(response, "usage", None)
        call = ModelCall(
            response_raw=response.model_dump() if hasattr(response, "model_dump") else {},
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
        )

        kept = []
        for block in response.content:
            if block.type != "tool_use":
                kept.append(block)
            elif call.call_id is None:
                call.tool_name, call.call_id, call.args = block.name, block.id, dict(block.input)
                kept.append(block)
        messages.append({"role": "assistant", "content": kept})
        return call

    def _reply(self, call: ModelCall, message: str) -> dict:
        if call.call_id is not None:
            block = {"type": "tool_result", "tool_use_id": call.call_id, "content": message}
        else:
            block = {"type": "text", "text": message}
        return {"role": "user", "content": [block]}


# ── Policy registry ──────────────────────────────────────────────────

@dataclass
class PolicySpec:
    """How to instantiate a model-backed policy."""

    id: str
    display_name: str
    provider: str  # "openai" | "anthropic" | "openrouter"

    def make_policy(self) -> OpenAIPolicy | AnthropicPolicy:
        cls, key_var, base_url = _PROVIDERS[self.provider]
        extra = {"base_url": base_url} if base_url else {}
        return cls(
            model=self.id,
            display_name=self.display_name,
            api_key=os.environ.get(key_var),
            **extra,
        )


# provider -> (policy class, API key variable, base URL)
_PROVIDERS: dict[str, tuple[type, str, str | None]] = {
    "openai": (OpenAIPolicy, "OPENAI_API_KEY", None),
    "anthropic": (AnthropicPolicy, "ANTHROPIC_API_KEY", None),
    "openrouter": (OpenAIPolicy, "OPENROUTER_API_KEY", "https://openrouter.ai/api/v1"),
}


MODELS: list[PolicySpec] = [
    PolicySpec("gpt-4.1-mini", "GPT-4.1 Mini", "openai"),
    PolicySpec("claude-haiku-4-5-20251001", "Claude Haiku 4.5", "anthropic"),
    PolicySpec("google/gemini-3-flash-preview", "Gemini 3 Flash", "openrouter"),
]


def make_policy(name: str = "random", seed: int | None = None) -> TurnPolicy:
    """Resolve ``"random"`` or a model id / display name to a policy."""
    if name == "random":
        return RandomPolicy(seed=seed)
    for spec in MODELS:
        if name in (spec.id, spec.display_name):
            return spec.make_policy()
    raise ValueError(f"Unknown policy: {name}")
