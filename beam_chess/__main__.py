"""CLI entry point: python -m beam_chess {play,policies}."""

from __future__ import annotations

import argparse
import asyncio
import sys

from beam_chess.board import Board, Controller, PieceKind, render
from beam_chess.game import EliminationEntry, GameController, GameResult
from beam_chess.policies import MODELS, make_policy
from beam_chess.terminal import read_selections
from beam_chess.turns import DEFAULT_THINK_TIME, TurnEntry


class PrintObserver:
    """Prints each turn and elimination as it happens."""

    def __init__(self, board: Board):
        self.board = board

    def on_turn(self, entry: TurnEntry) -> None:
        if entry.destination is None:
            print(f"[{entry.turn_number}] {entry.player} passes")
        else:
            print(f"[{entry.turn_number}] {entry.player} {entry.start} → {entry.destination}")
        if entry.controller is Controller.COMPUTER:
            print(render(self.board))

    def on_elimination(self, entry: EliminationEntry) -> None:
        print(f"  {entry.player} is caught in the beam at {entry.position}")

    def on_round(self, round_number: int) -> None:
        print(f"── round {round_number} complete ──")


async def _play(controller: GameController, interactive: bool) -> GameResult:
    game = controller.enter_game()
    if not interactive:
        return await game

    reader = asyncio.create_task(read_selections(controller))
    await asyncio.wait({game, reader}, return_when=asyncio.FIRST_COMPLETED)
    if not reader.done():
        reader.cancel()
        print("Press Enter to finish.")
    return await game


# ── play ─────────────────────────────────────────────────────────────

def cmd_play(args: argparse.Namespace) -> None:
    """Play one game in the terminal."""
    controllers = None
    if args.autoplay:
        controllers = {kind: Controller.COMPUTER for kind in PieceKind}

    board = Board(controllers=controllers)
    try:
        policy = make_policy(args.policy, seed=args.seed)
    except ValueError as exc:
        print(exc, file=sys.stderr)
        sys.exit(1)

    controller = GameController(
        board=board,
        policy=policy,
        think_time=args.think_time,
        max_rounds=args.max_rounds,
        observer=PrintObserver(board),
    )
    print(render(board))

    result = asyncio.run(_play(controller, interactive=not args.autoplay))

    if result.reason == "exited":
        print("Game abandoned.")
        return
    print(f"\n{result.reason} after {result.rounds} rounds ({result.turns} turns)")
    print(f"Winner: {result.winner or 'none'}  Survivors: {', '.join(result.survivors)}")


# ── policies ─────────────────────────────────────────────────────────

def cmd_policies(args: argparse.Namespace) -> None:
    """List the policies a computer piece can use."""
    print(f"  {'random':30s} uniform choice (baseline)")
    for spec in MODELS:
        print(f"  {spec.id:30s} {spec.display_name} [{spec.provider}]")


# ── main ─────────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(
        prog="beam_chess",
        description="Turn-based beam board game",
    )
    sub = parser.add_subparsers(dest="command")

    p_play = sub.add_parser("play", help="Play a game in the terminal")
    p_play.add_argument("--autoplay", action="store_true", help="Computer controls every piece")
    p_play.add_argument("--policy", default="random", help="Computer policy (default random)")
    p_play.add_argument("--seed", type=int, help="Seed for the random policy")
    p_play.add_argument(
        "--think-time", type=float, default=DEFAULT_THINK_TIME,
        help=f"Seconds a computer piece pauses before moving (default {DEFAULT_THINK_TIME})",
    )
    p_play.add_argument("--max-rounds", type=int, default=200, help="Stop after this many rounds")

    sub.add_parser("policies", help="List available computer policies")

    args = parser.parse_args()
    if args.command == "play":
        cmd_play(args)
    elif args.command == "policies":
        cmd_policies(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
