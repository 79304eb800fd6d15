from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, Mapping, Tuple, TypedDict

# -------------------------
# Constants
# -------------------------

# Every player has exactly this many designated opponents
OPPONENT_COUNT = 4


# -------------------------
# Data Classes
# -------------------------

# --- Data class for a raw row of the players file ---
class RawPlayer(TypedDict):
    name: str
    wins: str
    losses: str
    opp1: str
    opp2: str
    opp3: str
    opp4: str
    opp_wins: str
    opp_losses: str


# --- Data class for a raw row of the matches file ---
class RawMatch(TypedDict):
    player1: str
    player2: str


def _check_count(name: str, label: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{label} for {name!r} must be an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"{label} for {name!r} must be non-negative, got {value}")
    return value


# --- Fixed-size list of a player's designated opponents ---
@dataclass(frozen=True)
class Opponents:
    names: Tuple[str, ...]

    def __post_init__(self):
        names = tuple(self.names)
        if len(names) != OPPONENT_COUNT:
            raise ValueError(
                f"Expected exactly {OPPONENT_COUNT} opponents, got {len(names)}: {names}"
            )
        object.__setattr__(self, "names", names)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)


# --- Data class for an entry in the player registry ---
@dataclass
class Player:
    name: str
    wins: int
    losses: int
    opponent_wins: int  # wins by all opponents, excluding wins against this player
    opponent_losses: int  # losses by all opponents, excluding losses against this player
    opponents: Opponents
    placements: Dict[int, int] = field(default_factory=dict)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Player name must not be empty")
        _check_count(self.name, "wins", self.wins)
        _check_count(self.name, "losses", self.losses)
        _check_count(self.name, "opponent_wins", self.opponent_wins)
        _check_count(self.name, "opponent_losses", self.opponent_losses)
        if not isinstance(self.opponents, Opponents):
            self.opponents = Opponents(tuple(self.opponents))

    def add_placement(self, rank: int, count: int = 1) -> None:
        self.placements[rank] = self.placements.get(rank, 0) + count

    def stats(self) -> PlayerStats:
        """
        Fresh snapshot entry carrying the baseline record, without placements.
        """
        return PlayerStats(
            name=self.name,
            wins=self.wins,
            losses=self.losses,
            opponent_wins=self.opponent_wins,
            opponent_losses=self.opponent_losses,
            opponents=self.opponents,
        )

    @classmethod
    def from_row(cls, row: Mapping[str, object] | Iterable):
        """
        Create a Player from a dict keyed like RawPlayer, or from a positional row of 9 columns
        (name, wins, losses, opp1, opp2, opp3, opp4, opp_wins, opp_losses).
        Numeric fields may be strings.
        """
        if isinstance(row, Mapping):
            try:
                values = tuple(
                    row[k] for k in
                    ("name", "wins", "losses", "opp1", "opp2", "opp3", "opp4", "opp_wins", "opp_losses")
                )
            except KeyError as e:
                raise ValueError(f"Player row missing required {e.args[0]!r} field: {dict(row)}") from e
        else:
            values = tuple(row)
        if len(values) != 9:
            raise ValueError(f"Unexpected number of columns in player row: {len(values)}")

        name, wins, losses, opp1, opp2, opp3, opp4, opp_wins, opp_losses = values
        try:
            return cls(
                name=str(name),
                wins=int(wins),  # type: ignore[arg-type]
                losses=int(losses),  # type: ignore[arg-type]
                opponent_wins=int(opp_wins),  # type: ignore[arg-type]
                opponent_losses=int(opp_losses),  # type: ignore[arg-type]
                opponents=Opponents((str(opp1), str(opp2), str(opp3), str(opp4))),
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid player row {values}: {e}") from e


# --- Data class for one player's record inside an outcome snapshot ---
@dataclass
class PlayerStats:
    name: str
    wins: int
    losses: int
    opponent_wins: int
    opponent_losses: int
    opponents: Opponents


# --- Data class for an unplayed match ---
@dataclass(frozen=True, order=True)
class Match:
    first: str  # lexicographically greater name; wins when the outcome bit is 0
    second: str  # wins when the outcome bit is 1

    def __post_init__(self):
        if self.first == self.second:
            raise ValueError(f"Player {self.first!r} cannot play against themselves")


# -------------------------
# Type aliases
# -------------------------

Registry = Dict[str, Player]
Snapshot = Dict[str, PlayerStats]
# (player name, 1-based rank) -> number of outcomes
PlacementCounts = Counter
Histograms = Dict[str, Dict[int, int]]
