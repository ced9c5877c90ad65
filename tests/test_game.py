"""Tests for beam_chess.game (scheduler, elimination bookkeeping, lifecycle)."""

from __future__ import annotations

import asyncio

import pytest

from beam_chess.board import Board, BoardLayout, Controller, PieceKind
from beam_chess.game import GameController, GameResult, ListObserver, next_roster
from beam_chess.phase import GamePhase
from beam_chess.policies import RandomPolicy


class InstantClock:
    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(0)


class StalledClock:
    async def sleep(self, seconds: float) -> None:
        await asyncio.Event().wait()


class RecordingTurn:
    """Executor that walks the phase through a full turn without moving."""

    def __init__(self):
        self.order: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def run(self, turn):
        turn.phase.begin_turn()
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        turn.phase.advance(GamePhase.INPUT_RECEIVED)
        turn.phase.advance(GamePhase.MOVING)
        self.order.append(turn.player.name)
        self.in_flight -= 1
        turn.phase.advance(GamePhase.IDLE)
        return turn.entry()


class ScriptedBoard(Board):
    """Board whose elimination results are scripted per call."""

    def __init__(self, names, flags):
        layout = BoardLayout(
            rows=1,
            cols=2 * len(names),
            pieces=tuple((n, PieceKind.PAWN, (0, 2 * i)) for i, n in enumerate(names)),
        )
        super().__init__(layout, controllers={PieceKind.PAWN: Controller.COMPUTER})
        self.flags = list(flags)

    def evaluate_elimination(self, players):
        return self.flags.pop(0) if self.flags else set()


def _scripted_controller(names, flags, **kwargs):
    recorder = RecordingTurn()
    controller = GameController(
        board=ScriptedBoard(names, flags),
        executors={Controller.COMPUTER: recorder},
        **kwargs,
    )
    return controller, recorder


async def _wait_until(predicate, limit: int = 500) -> None:
    for _ in range(limit):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition never became true")


def _human_waiting(controller: GameController) -> bool:
    return (
        controller.current is not None
        and controller.current.player.controller is Controller.HUMAN
        and controller.phase.current is GamePhase.WAITING_FOR_INPUT
    )


# ── roster bookkeeping ───────────────────────────────────────────────

def test_next_roster_drops_flagged_and_keeps_order():
    a, b, c, d = "ABCD"
    roster, cursor = next_roster([a, b, c, d], {0, 2}, 2)
    assert roster == [b, d]
    assert roster[cursor] == d


def test_next_roster_removal_after_cursor():
    roster, cursor = next_roster(list("ABCD"), {3}, 1)
    assert roster == list("ABC")
    assert roster[cursor] == "C"


def test_next_roster_removal_before_cursor():
    roster, cursor = next_roster(list("ABCD"), {1}, 2)
    assert roster == list("ACD")
    assert roster[cursor] == "D"


def test_next_roster_nobody_left_this_round():
    roster, cursor = next_roster(list("ABCD"), {2, 3}, 2)
    assert roster == list("AB")
    assert cursor == len(roster)


# ── scheduler ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_removal_mid_round_skips_no_one():
    """[A,B,C,D], C active, A and C flagged → [B,D] and D moves next."""
    controller, recorder = _scripted_controller(
        ["a", "b", "c", "d"], [set(), set(), {0, 2}], max_rounds=2,
    )
    result = await asyncio.wait_for(controller.enter_game(), timeout=5)

    assert recorder.order == ["a", "b", "c", "d", "b", "d"]
    assert [p.name for p in controller.roster] == ["b", "d"]
    assert [e.player for e in controller.observer.eliminations] == ["c", "a"]
    assert result.reason == "max_rounds"
    assert result.survivors == ["b", "d"]


@pytest.mark.asyncio
async def test_removing_the_active_player_at_the_end_of_the_round():
    controller, recorder = _scripted_controller(
        ["a", "b", "c"], [set(), set(), {2}], max_rounds=2,
    )
    await asyncio.wait_for(controller.enter_game(), timeout=5)
    assert recorder.order == ["a", "b", "c", "a", "b"]


@pytest.mark.asyncio
async def test_game_ends_when_one_player_remains():
    observed_phases = []

    class PhaseAtElimination(ListObserver):
        def on_elimination(self, entry):
            observed_phases.append(controller.phase.current)
            super().on_elimination(entry)

    controller, recorder = _scripted_controller(
        ["a", "b", "c"], [{1, 2}], observer=PhaseAtElimination(),
    )
    result = await asyncio.wait_for(controller.enter_game(), timeout=5)

    assert result == GameResult(winner="a", reason="last_piece", rounds=1, turns=1, survivors=["a"])
    assert recorder.order == ["a"]
    assert observed_phases == [GamePhase.IDLE, GamePhase.IDLE]
    assert controller.phase.current is GamePhase.GAME_OVER
    assert controller.phase.history[-2:] == [GamePhase.IDLE, GamePhase.GAME_OVER]
    assert controller.observer.rounds == [1]
    assert not controller.active


@pytest.mark.asyncio
async def test_everyone_eliminated_at_once_has_no_winner():
    controller, _ = _scripted_controller(["a", "b"], [{0, 1}])
    result = await asyncio.wait_for(controller.enter_game(), timeout=5)
    assert result.reason == "last_piece"
    assert result.winner is None
    assert result.survivors == []


@pytest.mark.asyncio
async def test_single_piece_game_is_over_before_any_turn():
    controller, recorder = _scripted_controller(["solo"], [])
    result = await asyncio.wait_for(controller.enter_game(), timeout=5)
    assert recorder.order == []
    assert result.winner == "solo"
    assert result.rounds == 0
    assert controller.phase.current is GamePhase.GAME_OVER


@pytest.mark.asyncio
async def test_only_one_turn_in_flight():
    controller, recorder = _scripted_controller(["a", "b", "c", "d"], [], max_rounds=3)
    await asyncio.wait_for(controller.enter_game(), timeout=5)
    assert len(recorder.order) == 12
    assert recorder.max_in_flight == 1


@pytest.mark.asyncio
async def test_released_pieces_leave_the_board():
    released = []
    controller, _ = _scripted_controller(["a", "b", "c"], [{1}], max_rounds=1)
    controller.board.on_release = released.append
    await asyncio.wait_for(controller.enter_game(), timeout=5)
    assert [p.name for p in released] == ["b"]
    assert [p.name for p in controller.board.players] == ["a", "c"]


@pytest.mark.asyncio
async def test_full_computer_game_on_the_real_board():
    board = Board(controllers={kind: Controller.COMPUTER for kind in PieceKind})
    controller = GameController(
        board=board, policy=RandomPolicy(seed=3), clock=InstantClock(), max_rounds=40,
    )
    result = await asyncio.wait_for(controller.enter_game(), timeout=10)

    assert result.reason in ("last_piece", "max_rounds")
    assert controller.phase.current is GamePhase.GAME_OVER
    for entry in controller.observer.turns:
        assert entry.destination is None or entry.destination in entry.candidates
        if entry.destination is not None:
            assert entry.beam_updated
    assert len(controller.observer.eliminations) == 5 - len(result.survivors)


# ── human input through the controller ──────────────────────────────

@pytest.mark.asyncio
async def test_selection_reports_reach_only_a_waiting_human_turn():
    controller = GameController(
        policy=RandomPolicy(seed=5), clock=StalledClock(),
    )
    assert controller.report_selection((0, 0)) is False  # no game yet

    game = controller.enter_game()
    await _wait_until(lambda: controller.phase.current is GamePhase.WAITING_FOR_INPUT)
    assert controller.current.player.name == "eye"
    assert controller.report_selection((1, 2)) is False  # computer is thinking

    controller.exit_game()
    result = await asyncio.wait_for(game, timeout=5)
    assert result.reason == "exited"


@pytest.mark.asyncio
async def test_human_move_through_controller():
    controller = GameController(policy=RandomPolicy(seed=5), clock=InstantClock())
    game = controller.enter_game()
    await _wait_until(lambda: _human_waiting(controller))

    turn = controller.current
    assert turn.player.name == "blocker"
    assert controller.report_selection(None) is False
    assert controller.report_selection((4, 4)) is True  # delivered, then ignored
    await asyncio.sleep(0)
    assert controller.phase.current is GamePhase.WAITING_FOR_INPUT
    assert turn.player.position == (0, 2)

    destination = sorted(turn.candidates)[0]
    assert controller.report_selection(destination)
    await _wait_until(lambda: controller.observer.turns and controller.observer.turns[-1].player == "blocker")

    entry = controller.observer.turns[-1]
    assert entry.destination == destination
    assert entry.ignored_reports == 1
    assert entry.beam_updated

    controller.exit_game()
    await asyncio.wait_for(game, timeout=5)


# ── exit / re-enter ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_exit_mid_human_turn_reverts_display_and_reenter_is_clean():
    controller = GameController(policy=RandomPolicy(seed=11), clock=InstantClock())
    game = controller.enter_game()
    await _wait_until(lambda: _human_waiting(controller))
    board = controller.board
    assert board.highlighted_spaces
    assert board.highlighted_players
    assert board.beam_visible

    controller.exit_game()

    assert board.highlighted_spaces == set()
    assert board.highlighted_players == set()
    assert board.beam_visible  # restored to how it was before the turn
    assert controller.phase.current is GamePhase.IDLE
    assert controller.current is None
    result = await asyncio.wait_for(game, timeout=5)
    assert result.reason == "exited"

    controller.exit_game()  # idempotent

    game = controller.enter_game()
    await _wait_until(lambda: _human_waiting(controller))
    assert board.highlighted_spaces == controller.current.candidates
    assert board.highlighted_players == {id(controller.current.player)}
    assert controller.round_number == 1

    controller.exit_game()
    await asyncio.wait_for(game, timeout=5)


@pytest.mark.asyncio
async def test_exit_mid_computer_turn_reverts_highlight():
    controller = GameController(policy=RandomPolicy(seed=2), clock=StalledClock())
    game = controller.enter_game()
    await _wait_until(lambda: controller.phase.current is GamePhase.WAITING_FOR_INPUT)
    eye = controller.current.player
    assert controller.board.is_highlighted(eye)

    controller.exit_game()

    assert not controller.board.is_highlighted(eye)
    assert controller.board.highlighted_spaces == set()
    assert eye.position == (2, 2)
    result = await asyncio.wait_for(game, timeout=5)
    assert result.reason == "exited"


@pytest.mark.asyncio
async def test_reenter_without_exit_restarts_cleanly():
    controller = GameController(policy=RandomPolicy(seed=4), clock=InstantClock())
    first = controller.enter_game()
    await _wait_until(lambda: _human_waiting(controller))

    second = controller.enter_game()
    result = await asyncio.wait_for(first, timeout=5)
    assert result.reason == "exited"

    await _wait_until(lambda: _human_waiting(controller))
    assert controller.board.highlighted_spaces == controller.current.candidates

    controller.exit_game()
    await asyncio.wait_for(second, timeout=5)


def test_exit_without_a_game_is_a_no_op():
    controller = GameController()
    controller.exit_game()
    controller.exit_game()
    assert controller.phase.current is GamePhase.IDLE
    assert not controller.active


class LeavingTurn(RecordingTurn):
    """Finishes its turn, then exits the game before the scheduler resumes."""

    def __init__(self):
        super().__init__()
        self.leave = None

    async def run(self, turn):
        entry = await super().run(turn)
        # runs after this task completes but before the game task wakes up
        asyncio.get_running_loop().call_soon(self.leave)
        return entry


@pytest.mark.asyncio
async def test_exit_right_after_a_turn_finishes_returns_exited():
    leaving = LeavingTurn()
    controller = GameController(
        board=ScriptedBoard(["a", "b", "c"], []),
        executors={Controller.COMPUTER: leaving},
    )
    leaving.leave = controller.exit_game

    game = controller.enter_game()
    result = await asyncio.wait_for(game, timeout=5)

    assert not game.cancelled()
    assert result.reason == "exited"
    assert result.turns == 1
    assert leaving.order == ["a"]
    assert controller.observer.turns == []


@pytest.mark.asyncio
async def test_exit_from_an_observer_callback_returns_exited():
    class LeaveOnFirstTurn(ListObserver):
        def on_turn(self, entry):
            super().on_turn(entry)
            controller.exit_game()

    controller, recorder = _scripted_controller(
        ["a", "b", "c"], [{1}], observer=LeaveOnFirstTurn(),
    )
    game = controller.enter_game()
    result = await asyncio.wait_for(game, timeout=5)

    assert not game.cancelled()
    assert result.reason == "exited"
    assert recorder.order == ["a"]
    assert [e.player for e in controller.observer.turns] == ["a"]
    assert controller.observer.eliminations == []
    assert controller.observer.rounds == []
    assert len(controller.board.players) == 3


@pytest.mark.asyncio
async def test_exit_before_the_game_starts_returns_exited():
    controller, recorder = _scripted_controller(["a", "b"], [])
    game = controller.enter_game()
    controller.exit_game()

    result = await asyncio.wait_for(game, timeout=5)

    assert result.reason == "exited"
    assert result.turns == 0
    assert recorder.order == []
    assert not controller.board.beam_visible


@pytest.mark.asyncio
async def test_reenter_right_after_a_turn_leaves_the_old_game_behind():
    leaving = LeavingTurn()
    controller = GameController(
        board=ScriptedBoard(["a", "b"], []),
        executors={Controller.COMPUTER: leaving},
        max_rounds=1,
    )
    games = [controller.enter_game()]
    leaving.leave = lambda: games.append(controller.enter_game()) if len(games) == 1 else None

    first = await asyncio.wait_for(games[0], timeout=5)
    second = await asyncio.wait_for(games[1], timeout=5)

    assert first.reason == "exited"
    assert first.turns == 1
    assert second.reason == "max_rounds"
    assert leaving.order == ["a", "a", "b"]


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", [0, 1, 2])
async def test_default_layout_plays_out_to_the_last_piece(seed):
    board = Board(controllers={kind: Controller.COMPUTER for kind in PieceKind})
    controller = GameController(
        board=board, policy=RandomPolicy(seed=seed), clock=InstantClock(), max_rounds=2000,
    )
    result = await asyncio.wait_for(controller.enter_game(), timeout=60)

    assert result.reason == "last_piece"
    assert result.winner == "eye"
    assert result.survivors == ["eye"]
    removed = [e.player for e in controller.observer.eliminations]
    assert sorted(removed) == ["blocker", "pawn-a", "pawn-b", "pawn-c"]
    assert removed[-1] == "blocker"  # shielded until the pawns are gone


class ButtonTurn(RecordingTurn):
    """Another controller variant: its turn ends on an externally reported space."""

    def __init__(self):
        super().__init__()
        self.pressed: list = []
        self._press = None

    def report(self, space):
        if self._press is None or self._press.done():
            return False
        self._press.set_result(space)
        return True

    async def run(self, turn):
        turn.phase.begin_turn()
        self._press = asyncio.get_running_loop().create_future()
        self.pressed.append(await self._press)
        self._press = None
        turn.phase.advance(GamePhase.INPUT_RECEIVED)
        turn.phase.advance(GamePhase.MOVING)
        self.order.append(turn.player.name)
        turn.phase.advance(GamePhase.IDLE)
        return turn.entry()


@pytest.mark.asyncio
async def test_any_selection_sink_executor_receives_reports():
    button = ButtonTurn()
    controller = GameController(
        board=ScriptedBoard(["a", "b"], []),
        executors={Controller.COMPUTER: button},
        max_rounds=1,
    )
    game = controller.enter_game()

    for i, space in enumerate([(0, 1), (0, 3)]):
        await _wait_until(lambda: controller.phase.current is GamePhase.WAITING_FOR_INPUT)
        assert controller.report_selection(space)
        await _wait_until(lambda: len(button.pressed) == i + 1)

    result = await asyncio.wait_for(game, timeout=5)
    assert result.reason == "max_rounds"
    assert button.pressed == [(0, 1), (0, 3)]
    assert button.order == ["a", "b"]
