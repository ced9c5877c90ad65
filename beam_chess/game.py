"""Game controller: schedules turns, applies the beam, detects game over."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from beam_chess.board import Board, Controller, PieceKind, Player, Space
from beam_chess.clock import Clock
from beam_chess.phase import GamePhase, PhaseError, PhaseMachine
from beam_chess.policies import TurnPolicy
from beam_chess.turns import (
    DEFAULT_THINK_TIME,
    ComputerTurn,
    HumanTurn,
    SelectionSink,
    Turn,
    TurnEntry,
    TurnExecutor,
)


# ── Structured types ────────────────────────────────────────────────

@dataclass
class EliminationEntry:
    """A piece removed by the beam."""

    round_number: int
    turn_number: int
    player: str
    kind: PieceKind
    position: Space
    index: int  # roster index at the moment of removal


@dataclass
class GameResult:
    winner: str | None  # last piece standing, None otherwise
    reason: str  # "last_piece" | "max_rounds" | "exited"
    rounds: int = 0
    turns: int = 0
    survivors: list[str] = field(default_factory=list)


# ── Observer ────────────────────────────────────────────────────────

class GameObserver(Protocol):
    """Receives structured events as a game is played."""

    def on_turn(self, entry: TurnEntry) -> None: ...

    def on_elimination(self, entry: EliminationEntry) -> None: ...

    def on_round(self, round_number: int) -> None: ...


@dataclass
class ListObserver:
    """Default observer: collects events into lists."""

    turns: list[TurnEntry] = field(default_factory=list)
    eliminations: list[EliminationEntry] = field(default_factory=list)
    rounds: list[int] = field(default_factory=list)

    def on_turn(self, entry: TurnEntry) -> None:
        self.turns.append(entry)

    def on_elimination(self, entry: EliminationEntry) -> None:
        self.eliminations.append(entry)

    def on_round(self, round_number: int) -> None:
        self.rounds.append(round_number)


# ── Roster bookkeeping ──────────────────────────────────────────────

def next_roster(
    roster: Sequence[Player], flagged: set[int], cursor: int,
) -> tuple[list[Player], int]:
    """Drop *flagged* indices and find where the round continues.

    Returns the surviving roster and the index in it of the first survivor
    that came after ``roster[cursor]`` in turn order (``len(survivors)``
    when nobody is left to move this round).
    """
    survivors = [p for idx, p in enumerate(roster) if idx not in flagged]
    upcoming = next(
        (p for idx, p in enumerate(roster) if idx > cursor and idx not in flagged),
        None,
    )
    if upcoming is None:
        return survivors, len(survivors)
    return survivors, survivors.index(upcoming)


# ── Controller ──────────────────────────────────────────────────────

class GameController:
    """Owns the roster and the phase; runs one game at a time."""

    def __init__(
        self,
        board: Board | None = None,
        executors: dict[Controller, TurnExecutor] | None = None,
        policy: TurnPolicy | None = None,
        clock: Clock | None = None,
        think_time: float = DEFAULT_THINK_TIME,
        max_rounds: int | None = None,
        observer: GameObserver | None = None,
    ):
        self.board = board or Board()
        self.executors: dict[Controller, TurnExecutor] = {
            Controller.HUMAN: HumanTurn(),
            Controller.COMPUTER: ComputerTurn(policy, clock, think_time),
            **(executors or {}),
        }
        self.max_rounds = max_rounds
        self.observer = observer or ListObserver()
        self.phase = PhaseMachine()
        self.roster: list[Player] = []
        self.active = False
        self.current: Turn | None = None
        self.round_number = 0
        self.turn_number = 0
        self._generation = 0  # bumped by every enter_game()
        self._turn_task: asyncio.Task[TurnEntry] | None = None
        self._exit_results: dict[int, GameResult] = {}

    # ── lifecycle ───────────────────────────────────────────────────

    def enter_game(self) -> asyncio.Task[GameResult]:
        """Reset the board and start a fresh game on the running loop."""
        self.exit_game()
        self.board.reset()
        self.phase = PhaseMachine()
        self.roster = list(self.board.players)
        self.round_number = 0
        self.turn_number = 0
        self.active = True
        self._generation += 1
        return asyncio.create_task(self.run_game(self._generation))

    def exit_game(self) -> None:
        """Abort the current game, undoing whatever the in-flight turn shows.

        Safe to call at any time, any number of times, including from an
        observer callback. The game task is never cancelled: it notices the
        exit at its next step and returns an ``"exited"`` result.
        """
        if self.active:
            self._exit_results[self._generation] = self._result("exited")
        self.active = False
        if self.current is not None:
            self.current.revert()
            self.current = None
        if self._turn_task is not None and not self._turn_task.done():
            self._turn_task.cancel()
        self._turn_task = None
        self.phase.abort()

    def report_selection(self, space: Space | None) -> bool:
        """Deliver a selected space to the active turn.

        Only meaningful while the phase is WAITING_FOR_INPUT and the turn
        belongs to a ``SelectionSink`` executor; otherwise a no-op.
        """
        if space is None or self.current is None:
            return False
        if self.phase.current is not GamePhase.WAITING_FOR_INPUT:
            return False
        executor = self.executors[self.current.player.controller]
        if not isinstance(executor, SelectionSink):
            return False
        return executor.report(space)

    # ── scheduler ───────────────────────────────────────────────────

    def _live(self, generation: int) -> bool:
        return self.active and self._generation == generation

    async def run_game(self, generation: int) -> GameResult:
        phase = self.phase
        reason = "last_piece"
        if self._live(generation):
            self.board.update_beam()
            self.board.set_beam_visible(True)
            if len(self.roster) <= 1:
                self.active = False

        while self._live(generation):
            self.round_number += 1
            cursor = 0
            while cursor < len(self.roster) and self._live(generation):
                try:
                    entry = await self._play_turn(self.roster[cursor], phase)
                except asyncio.CancelledError:
                    if asyncio.current_task().cancelling():
                        raise
                    break  # turn cancelled by exit_game()
                if not self._live(generation):
                    break
                self.observer.on_turn(entry)
                if not self._live(generation):
                    break
                cursor = self._apply_elimination(cursor)
                if len(self.roster) <= 1:
                    self.active = False
            if generation in self._exit_results:
                break
            self.observer.on_round(self.round_number)
            if self.active and self.max_rounds is not None and self.round_number >= self.max_rounds:
                self.active = False
                reason = "max_rounds"

        if generation in self._exit_results:
            return self._exit_results.pop(generation)
        phase.advance(GamePhase.GAME_OVER)
        return self._result(reason)

    async def _play_turn(self, player: Player, phase: PhaseMachine) -> TurnEntry:
        self.turn_number += 1
        turn = Turn(
            player=player,
            candidates=self.board.adjacent_spaces(player.position),
            board=self.board,
            phase=phase,
            round_number=self.round_number,
            turn_number=self.turn_number,
            beam_was_visible=self.board.beam_visible,
        )
        executor = self.executors[player.controller]
        self.current = turn
        task = asyncio.create_task(executor.run(turn))
        self._turn_task = task
        try:
            entry = await task
        finally:
            if self.current is turn:
                self.current = None
            if self._turn_task is task:
                self._turn_task = None

        await phase.wait_for(GamePhase.IDLE)
        if phase.current is not GamePhase.IDLE:
            raise PhaseError(f"Turn for {player.name} ended in {phase.current.name}")
        return entry

    def _apply_elimination(self, cursor: int) -> int:
        """Remove every flagged piece; return the cursor of the next turn."""
        flagged = self.board.evaluate_elimination(self.roster)
        if not flagged:
            return cursor + 1
        for idx in sorted(flagged, reverse=True):
            player = self.roster[idx]
            self.observer.on_elimination(EliminationEntry(
                round_number=self.round_number,
                turn_number=self.turn_number,
                player=player.name,
                kind=player.kind,
                position=player.position,
                index=idx,
            ))
            self.board.release(player)
        self.roster, cursor = next_roster(self.roster, flagged, cursor)
        return cursor

    def _result(self, reason: str) -> GameResult:
        winner = self.roster[0].name if reason == "last_piece" and len(self.roster) == 1 else None
        return GameResult(
            winner=winner,
            reason=reason,
            rounds=self.round_number,
            turns=self.turn_number,
            survivors=[p.name for p in self.roster],
        )
