"""Tool schemas (OpenAI function-calling format) and choice validation."""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass

from beam_chess.board import Space

# ── OpenAI-style tool schemas ────────────────────────────────────────

TOOL_SCHEMAS: list[dict] = [
    {
        "type": "function",
        "function": {
            "name": "move_piece_to_space",
            "description": "Move your piece to one of the legal destination spaces listed in the prompt.",
            "parameters": {
                "type": "object",
                "properties": {
                    "up": {
                        "type": "integer",
                        "description": "Row of the destination space.",
                    },
                    "across": {
                        "type": "integer",
                        "description": "Column of the destination space.",
                    },
                },
                "required": ["up", "across"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "plan",
            "description": "Think step-by-step before moving. This tool has no side effects.",
            "parameters": {
                "type": "object",
                "properties": {
                    "thought": {
                        "type": "string",
                        "description": "Your internal reasoning for this move.",
                    }
                },
                "required": ["thought"],
            },
        },
    },
]


# ── Choice result ────────────────────────────────────────────────────

@dataclass
class ChoiceResult:
    ok: bool = False
    space: Space | None = None
    message: str = ""


def validate_choice(
    tool_name: str,
    args: dict,
    candidates: Collection[Space],
) -> ChoiceResult:
    """Turn a tool call into a legal destination, or explain why it isn't one."""
    if tool_name == "plan":
        return ChoiceResult(message="Plan noted. Now call move_piece_to_space.")

    if tool_name != "move_piece_to_space":
        return ChoiceResult(message=f"Unknown tool: {tool_name}")

    up, across = args.get("up"), args.get("across")
    # bool is an int subclass; JSON true/false is not a coordinate
    if any(not isinstance(v, int) or isinstance(v, bool) for v in (up, across)):
        return ChoiceResult(message="Both 'up' and 'across' must be integers.")

    space = (up, across)
    if space not in candidates:
        legal = ", ".join(f"({u}, {a})" for u, a in sorted(candidates))
        return ChoiceResult(
            message=f"({up}, {across}) is not a legal destination. Choose one of: {legal}.",
        )
    return ChoiceResult(ok=True, space=space, message=f"Moved to ({up}, {across}).")
