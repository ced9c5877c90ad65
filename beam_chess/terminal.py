"""Terminal selection source: typed coordinates stand in for pointing at a space."""

from __future__ import annotations

import asyncio

from beam_chess.board import Space, render
from beam_chess.game import GameController
from beam_chess.phase import GamePhase
from beam_chess.turns import SelectionSink

QUIT_WORDS = frozenset({"q", "quit", "exit"})


def parse_space(text: str) -> Space | None:
    """Parse ``"up,across"`` (or ``"up across"``) into a space."""
    parts = text.replace(",", " ").split()
    if len(parts) != 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None


async def read_selections(controller: GameController, prompt: str = "move> ") -> None:
    """Prompt for a space whenever a human turn is waiting; stop on quit."""
    while controller.active:
        await controller.phase.wait_for(GamePhase.WAITING_FOR_INPUT)
        turn = controller.current
        if turn is None or not isinstance(controller.executors[turn.player.controller], SelectionSink):
            await controller.phase.wait_for(GamePhase.IDLE)
            continue

        print(render(controller.board))
        legal = " ".join(f"{u},{a}" for u, a in sorted(turn.candidates))
        print(f"{turn.player.name} ({turn.player.kind.value}) to move. Legal: {legal}")
        line = await asyncio.to_thread(input, prompt)

        if line.strip().lower() in QUIT_WORDS:
            controller.exit_game()
            return
        space = parse_space(line)
        if space is None:
            print("Enter a space as 'up,across', or 'quit'.")
            continue
        if space not in turn.candidates:
            print(f"{space[0]},{space[1]} is not a legal destination.")
            continue
        if controller.report_selection(space):
            await controller.phase.wait_for(GamePhase.IDLE)
