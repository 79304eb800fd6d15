from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

import pandas as pd

from standings_engine.data_classes import (
    Histograms,
    Match,
    Player,
    RawMatch,
    RawPlayer,
    Registry,
)


# -------------------------
# Constants
# -------------------------

# Names in the source files carry a fixed-width label (e.g. "01 ") ahead of the name
DEFAULT_PREFIX_LENGTH = 3

PLAYER_COLUMNS = ["name", "wins", "losses", "opp1", "opp2", "opp3", "opp4", "opp_wins", "opp_losses"]
MATCH_COLUMNS = ["player1", "player2"]
NAME_FIELDS = ["name", "opp1", "opp2", "opp3", "opp4"]


# -------------------------
# Helpers
# -------------------------


def strip_prefix(s: str, prefix_length: int = DEFAULT_PREFIX_LENGTH) -> str:
    """
    Drop the first prefix_length characters of s. Names shorter than the prefix are kept as-is.
    """
    if prefix_length > 0 and len(s) >= prefix_length:
        return s[prefix_length:]
    return s


def canonical_match(x: str, y: str) -> Match:
    """
    Given two player names x and y, return a Match with the lexicographically greater name first,
    so a match and its reversed duplicate compare equal.
    """
    return Match(x, y) if x > y else Match(y, x)


def dedupe_matches(pairs: Iterable[Tuple[str, str]]) -> List[Match]:
    """
    Collapse duplicate (and reversed) pairs and sort them.
    The sorted order fixes which outcome bit controls which match.
    """
    return sorted({canonical_match(a, b) for a, b in pairs})


def build_registry(players: Iterable[Player]) -> Registry:
    registry: Registry = {}
    for player in players:
        if player.name in registry:
            raise ValueError(f"Duplicate player name: {player.name!r}")
        registry[player.name] = player
    return registry


def _read_csv(path: str | Path, required_cols: Sequence[str]) -> pd.DataFrame:
    # Everything as text; numeric conversion and validation happens per row
    df = pd.read_csv(path, dtype=str, keep_default_na=False, skipinitialspace=True)
    df.columns = [str(c).strip() for c in df.columns]
    missing = [c for c in required_cols if c not in df.columns]
    if missing:
        raise ValueError(f"{path}: missing required columns {missing}")
    return df


def parse_players(rows: Iterable[RawPlayer], prefix_length: int = DEFAULT_PREFIX_LENGTH) -> Registry:
    """
    Convert raw player rows into the player registry, stripping name prefixes.
    """
    players = []
    for row in rows:
        # Player checks apply to the stripped names
        stripped = dict(row)
        for key in NAME_FIELDS:
            if key in stripped:
                stripped[key] = strip_prefix(str(stripped[key]), prefix_length)
        players.append(Player.from_row(stripped))
    return build_registry(players)


def parse_matches(rows: Iterable[RawMatch], prefix_length: int = DEFAULT_PREFIX_LENGTH) -> List[Match]:
    """
    Convert raw match rows into the canonical, deduplicated, sorted match list.
    """
    pairs = []
    for row in rows:
        try:
            p1, p2 = row["player1"], row["player2"]
        except KeyError as e:
            raise ValueError(f"Match row missing required {e.args[0]!r} field: {dict(row)}") from e
        pairs.append((strip_prefix(p1, prefix_length), strip_prefix(p2, prefix_length)))
    return dedupe_matches(pairs)


def load_players(path: str | Path, prefix_length: int = DEFAULT_PREFIX_LENGTH) -> Registry:
    df = _read_csv(path, PLAYER_COLUMNS)
    rows = [{c: str(r[c]).strip() for c in PLAYER_COLUMNS} for _, r in df.iterrows()]
    return parse_players(rows, prefix_length)  # type: ignore[arg-type]


def load_matches(path: str | Path, prefix_length: int = DEFAULT_PREFIX_LENGTH) -> List[Match]:
    df = _read_csv(path, MATCH_COLUMNS)
    rows = [{c: str(r[c]).strip() for c in MATCH_COLUMNS} for _, r in df.iterrows()]
    return parse_matches(rows, prefix_length)  # type: ignore[arg-type]


# -------------------------
# Report formatting
# -------------------------


def format_report(histograms: Histograms) -> str:
    """
    Render placement histograms as text, one line per player:

        final players:
          Alpha: {1: 3, 2: 1}
    """
    lines = ["final players:"]
    for name in sorted(histograms):
        placements = histograms[name]
        if not placements:
            continue
        ranks = ", ".join(f"{rank}: {placements[rank]}" for rank in sorted(placements))
        lines.append(f"  {name}: {{{ranks}}}")
    return "\n".join(lines) + "\n"


def placement_odds_frame(histograms: Histograms, outcomes: int, top_ranks: int) -> pd.DataFrame:
    """
    One row per reported player with the share of outcomes finishing at each rank (odds_1..odds_K)
    and the share finishing anywhere in the top ranks (odds_top).
    """
    rank_cols = [f"odds_{rank}" for rank in range(1, top_ranks + 1)]
    records = []
    for name, placements in histograms.items():
        if not placements:
            continue
        record = {"player": name}
        for rank, col in enumerate(rank_cols, start=1):
            record[col] = placements.get(rank, 0) / outcomes if outcomes else 0.0
        record["odds_top"] = sum(record[col] for col in rank_cols)
        records.append(record)

    df = pd.DataFrame.from_records(records, columns=["player", *rank_cols, "odds_top"])
    if df.empty:
        return df
    return df.sort_values(by=["odds_top", "player"], ascending=[False, True]).reset_index(drop=True)
