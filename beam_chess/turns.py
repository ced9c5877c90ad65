"""Turn executors: run one player's turn from WAITING_FOR_INPUT back to IDLE."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from beam_chess.board import Board, Controller, PieceKind, Player, Space
from beam_chess.clock import AsyncioClock, Clock
from beam_chess.phase import GamePhase, PhaseMachine
from beam_chess.policies import PolicyInvocation, RandomPolicy, TurnPolicy

DEFAULT_THINK_TIME = 1.0  # seconds a computer piece "thinks" before moving


# ── Structured types ────────────────────────────────────────────────

@dataclass
class TurnEntry:
    """Record of a single completed turn."""

    round_number: int
    turn_number: int
    player: str
    kind: PieceKind
    controller: Controller
    start: Space
    candidates: frozenset[Space]
    destination: Space | None = None
    moved: bool = False
    beam_updated: bool = False
    ignored_reports: int = 0
    invocation: PolicyInvocation | None = None


@dataclass
class Turn:
    """Everything one executor borrows for the duration of a turn.

    Tracks what the turn currently shows on the board so the exit path can
    undo exactly that and nothing more.
    """

    player: Player
    candidates: frozenset[Space]
    board: Board
    phase: PhaseMachine
    round_number: int = 0
    turn_number: int = 0
    beam_was_visible: bool = False
    shown_spaces: frozenset[Space] = frozenset()
    highlighted: bool = False

    def entry(self) -> TurnEntry:
        return TurnEntry(
            round_number=self.round_number,
            turn_number=self.turn_number,
            player=self.player.name,
            kind=self.player.kind,
            controller=self.player.controller,
            start=self.player.position,
            candidates=self.candidates,
        )

    def show(self, spaces: bool = True) -> None:
        self.board.toggle_highlight(self.player)
        self.highlighted = True
        if spaces and self.candidates:
            self.board.toggle_spaces(self.candidates)
            self.shown_spaces = self.candidates

    def revert(self) -> None:
        if self.highlighted:
            self.board.toggle_highlight(self.player)
            self.highlighted = False
        if self.shown_spaces:
            self.board.toggle_spaces(self.shown_spaces)
            self.shown_spaces = frozenset()
        self.board.set_beam_visible(self.beam_was_visible)

    def commit(self, destination: Space, entry: TurnEntry) -> None:
        """INPUT_RECEIVED -> MOVING, apply the move, un-highlight."""
        self.phase.advance(GamePhase.INPUT_RECEIVED)
        self.phase.advance(GamePhase.MOVING)
        entry.destination = destination
        entry.moved = self.board.try_move(self.player, destination)
        self.revert()


class TurnExecutor(Protocol):
    async def run(self, turn: Turn) -> TurnEntry: ...


@runtime_checkable
class SelectionSink(Protocol):
    """An executor whose turns end on a selection reported from outside."""

    def report(self, space: Space) -> bool: ...


# ── Human ───────────────────────────────────────────────────────────

class HumanTurn:
    """Waits for selection reports; only a legal candidate ends the wait."""

    def __init__(self) -> None:
        self._selections: asyncio.Queue[Space] | None = None

    @property
    def accepting(self) -> bool:
        return self._selections is not None

    def report(self, space: Space) -> bool:
        if self._selections is None:
            return False
        self._selections.put_nowait(space)
        return True

    async def run(self, turn: Turn) -> TurnEntry:
        entry = turn.entry()
        if not turn.candidates:
            return entry  # boxed in: the turn passes without waiting

        turn.phase.begin_turn()
        turn.show()
        selections: asyncio.Queue[Space] = asyncio.Queue()
        self._selections = selections
        try:
            while True:
                space = await selections.get()
                if space in turn.candidates:
                    break
                entry.ignored_reports += 1
        except asyncio.CancelledError:
            turn.phase.abort()
            raise
        finally:
            if self._selections is selections:
                self._selections = None

        turn.commit(space, entry)
        if turn.player.kind is PieceKind.BLOCKER:
            turn.board.update_beam()
            entry.beam_updated = True
        turn.phase.advance(GamePhase.IDLE)
        return entry


# ── Computer ────────────────────────────────────────────────────────

class ComputerTurn:
    """Pauses for ``think_time``, then lets the policy pick."""

    def __init__(
        self,
        policy: TurnPolicy | None = None,
        clock: Clock | None = None,
        think_time: float = DEFAULT_THINK_TIME,
    ):
        self.policy = policy or RandomPolicy()
        self.clock = clock or AsyncioClock()
        self.think_time = think_time

    async def run(self, turn: Turn) -> TurnEntry:
        entry = turn.entry()
        turn.phase.begin_turn()
        turn.show(spaces=False)
        try:
            await self.clock.sleep(self.think_time)
            # choose() may block on a network round trip
            destination = await asyncio.to_thread(
                self.policy.choose, turn.player, turn.candidates, turn.board,
            )
        except asyncio.CancelledError:
            turn.phase.abort()
            raise

        entry.invocation = self.policy.last_invocation
        if destination is None or destination not in turn.candidates:
            turn.revert()
            turn.phase.advance(GamePhase.IDLE)
            return entry

        turn.commit(destination, entry)
        turn.board.update_beam()
        entry.beam_updated = True
        turn.phase.advance(GamePhase.IDLE)
        return entry
