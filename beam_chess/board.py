"""Board state, piece layout and the beam rule."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

Space = tuple[int, int]  # (up, across)


class PieceKind(Enum):
    EYE = "eye"
    BLOCKER = "blocker"
    PAWN = "pawn"


class Controller(Enum):
    HUMAN = "human"
    COMPUTER = "computer"


DEFAULT_CONTROLLERS: dict[PieceKind, Controller] = {
    PieceKind.EYE: Controller.COMPUTER,
    PieceKind.BLOCKER: Controller.HUMAN,
    PieceKind.PAWN: Controller.HUMAN,
}


@dataclass(eq=False)
class Player:
    """One piece in turn order. Compared by identity, not by position."""

    name: str
    kind: PieceKind
    position: Space
    controller: Controller = Controller.HUMAN
    handle: object = field(default=None, repr=False)


@dataclass(frozen=True)
class BoardLayout:
    rows: int
    cols: int
    pieces: tuple[tuple[str, PieceKind, Space], ...]


# fmt: off
DEFAULT_LAYOUT = BoardLayout(
    rows=5,
    cols=5,
    pieces=(
        ("eye",     PieceKind.EYE,     (2, 2)),
        ("blocker", PieceKind.BLOCKER, (0, 2)),
        ("pawn-a",  PieceKind.PAWN,    (4, 0)),
        ("pawn-b",  PieceKind.PAWN,    (4, 2)),
        ("pawn-c",  PieceKind.PAWN,    (4, 4)),
    ),
)
# fmt: on


class Board:
    """Reference board: square grid, orthogonal moves, one beam per Eye."""

    def __init__(
        self,
        layout: BoardLayout = DEFAULT_LAYOUT,
        controllers: dict[PieceKind, Controller] | None = None,
        on_release: Callable[[Player], None] | None = None,
    ):
        self.layout = layout
        self.controllers = {**DEFAULT_CONTROLLERS, **(controllers or {})}
        self.on_release = on_release
        self.players: list[Player] = []
        self.beam: frozenset[Space] = frozenset()
        self.struck: frozenset[Space] = frozenset()
        self.beam_visible = False
        self.highlighted_players: set[int] = set()
        self.highlighted_spaces: set[Space] = set()
        self.reset()

    def reset(self) -> None:
        self.players = [
            Player(name=name, kind=kind, position=space, controller=self.controllers[kind])
            for name, kind, space in self.layout.pieces
        ]
        self.beam = frozenset()
        self.struck = frozenset()
        self.beam_visible = False
        self.highlighted_players.clear()
        self.highlighted_spaces.clear()

    # ── geometry ────────────────────────────────────────────────────

    def in_bounds(self, space: Space) -> bool:
        up, across = space
        return 0 <= up < self.layout.rows and 0 <= across < self.layout.cols

    def piece_at(self, space: Space) -> Player | None:
        for player in self.players:
            if player.position == space:
                return player
        return None

    def adjacent_spaces(self, position: Space) -> frozenset[Space]:
        """Free orthogonal neighbours of *position*."""
        up, across = position
        neighbours = ((up - 1, across), (up + 1, across), (up, across - 1), (up, across + 1))
        return frozenset(
            s for s in neighbours if self.in_bounds(s) and self.piece_at(s) is None
        )

    # ── mutation ────────────────────────────────────────────────────

    def try_move(self, player: Player, destination: Space) -> bool:
        if destination not in self.adjacent_spaces(player.position):
            return False
        player.position = destination
        return True

    def release(self, player: Player) -> None:
        """Take an eliminated piece off the board and hand back its handle."""
        if player in self.players:
            self.players.remove(player)
        self.highlighted_players.discard(id(player))
        if self.on_release is not None:
            self.on_release(player)

    # ── beam ────────────────────────────────────────────────────────

    def _beam_from(self, eye: Player) -> tuple[set[Space], set[Space]]:
        """Spaces lit by *eye*, and the blockers its beam runs into."""
        up, across = eye.position
        lit: set[Space] = set()
        struck: set[Space] = set()
        for step in (-1, 1):
            col = across + step
            while 0 <= col < self.layout.cols:
                occupant = self.piece_at((up, col))
                if occupant is not None and occupant.kind is PieceKind.BLOCKER:
                    struck.add((up, col))
                    break
                lit.add((up, col))
                col += step
        return lit, struck

    def update_beam(self) -> frozenset[Space]:
        """Recompute the beam from every Eye's current position."""
        lit: set[Space] = set()
        struck: set[Space] = set()
        for player in self.players:
            if player.kind is PieceKind.EYE:
                eye_lit, eye_struck = self._beam_from(player)
                lit |= eye_lit
                struck |= eye_struck
        self.beam = frozenset(lit)
        self.struck = frozenset(struck)
        return self.beam

    def evaluate_elimination(self, players: Sequence[Player]) -> set[int]:
        """Indices into *players* of pieces the current beam removes.

        Pawns and Eyes standing in the beam are flagged. An Eye's own beam
        never covers its own square, so an Eye is only flagged by another
        Eye. A Blocker the beam runs into is flagged only once no Pawn is
        left in *players*.
        """
        pawns_left = any(p.kind is PieceKind.PAWN for p in players)
        flagged = set()
        for idx, player in enumerate(players):
            if player.kind is PieceKind.BLOCKER:
                if not pawns_left and player.position in self.struck:
                    flagged.add(idx)
            elif player.position in self.beam:
                flagged.add(idx)
        return flagged

    # ── display state ───────────────────────────────────────────────

    def set_beam_visible(self, visible: bool) -> None:
        self.beam_visible = visible

    def toggle_highlight(self, player: Player) -> None:
        self.highlighted_players ^= {id(player)}

    def toggle_spaces(self, spaces: Iterable[Space]) -> None:
        self.highlighted_spaces ^= set(spaces)

    def is_highlighted(self, player: Player) -> bool:
        return id(player) in self.highlighted_players


PIECE_CHARS: dict[PieceKind, str] = {
    PieceKind.EYE: "E",
    PieceKind.BLOCKER: "B",
    PieceKind.PAWN: "P",
}


def render(board: Board) -> str:
    """Text grid of the board.

    Highlighted pieces are lower-case, highlighted candidate spaces are
    ``+`` and beamed empty spaces (when the beam is visible) are ``*``::

          0 1 2 3 4
        0 . . B . .
        1 . . . . .
        2 * * E * *
        3 . . . . .
        4 P . P . P
    """
    cols = board.layout.cols
    lines = ["  " + " ".join(str(c) for c in range(cols))]
    for up in range(board.layout.rows):
        cells = []
        for across in range(cols):
            space = (up, across)
            piece = board.piece_at(space)
            if piece is not None:
                char = PIECE_CHARS[piece.kind]
                cells.append(char.lower() if board.is_highlighted(piece) else char)
            elif space in board.highlighted_spaces:
                cells.append("+")
            elif board.beam_visible and space in board.beam:
                cells.append("*")
            else:
                cells.append(".")
        lines.append(f"{up} " + " ".join(cells))
    return "\n".join(lines)
