"""Shared game phase: the rendezvous between the scheduler and a turn."""

from __future__ import annotations

import asyncio
from enum import Enum


class GamePhase(Enum):
    IDLE = "idle"
    WAITING_FOR_INPUT = "waiting_for_input"
    INPUT_RECEIVED = "input_received"
    MOVING = "moving"
    GAME_OVER = "game_over"


TRANSITIONS: dict[GamePhase, frozenset[GamePhase]] = {
    GamePhase.IDLE: frozenset({GamePhase.WAITING_FOR_INPUT, GamePhase.GAME_OVER}),
    # IDLE here is a passed turn: the policy had nothing to choose.
    GamePhase.WAITING_FOR_INPUT: frozenset({GamePhase.INPUT_RECEIVED, GamePhase.IDLE}),
    GamePhase.INPUT_RECEIVED: frozenset({GamePhase.MOVING}),
    GamePhase.MOVING: frozenset({GamePhase.IDLE}),
    GamePhase.GAME_OVER: frozenset(),
}


class PhaseError(RuntimeError):
    """An illegal phase transition. Always a programming error."""


class ConcurrentTurnError(PhaseError):
    """A turn was started while another one was still in flight."""


class PhaseMachine:
    """Current phase plus awaitable waiters for specific phases.

    Transitions happen synchronously; anything awaiting ``wait_for`` is
    woken on the next pass of the event loop.
    """

    def __init__(self) -> None:
        self._phase = GamePhase.IDLE
        self._waiters: list[tuple[GamePhase, asyncio.Future[None]]] = []
        self.history: list[GamePhase] = [GamePhase.IDLE]

    @property
    def current(self) -> GamePhase:
        return self._phase

    @property
    def turn_in_flight(self) -> bool:
        return self._phase not in (GamePhase.IDLE, GamePhase.GAME_OVER)

    def advance(self, target: GamePhase) -> None:
        if target not in TRANSITIONS[self._phase]:
            raise PhaseError(f"Illegal transition {self._phase.name} -> {target.name}")
        self._set(target)

    def begin_turn(self) -> None:
        if self._phase is not GamePhase.IDLE:
            raise ConcurrentTurnError(
                f"Cannot start a turn while phase is {self._phase.name}"
            )
        self._set(GamePhase.WAITING_FOR_INPUT)

    def abort(self) -> None:
        """Force IDLE from any in-flight phase. No-op otherwise."""
        if self.turn_in_flight:
            self._set(GamePhase.IDLE)

    async def wait_for(self, target: GamePhase) -> None:
        if self._phase is target:
            return
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append((target, fut))
        try:
            await fut
        finally:
            self._waiters = [(p, f) for p, f in self._waiters if f is not fut]

    def _set(self, phase: GamePhase) -> None:
        self._phase = phase
        self.history.append(phase)
        for target, fut in self._waiters:
            if target is phase and not fut.done():
                fut.set_result(None)
