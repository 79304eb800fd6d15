from __future__ import annotations

from collections import Counter
from concurrent.futures import ProcessPoolExecutor
from functools import cmp_to_key
from typing import List, Optional, Sequence, Tuple

from prefect.logging import get_logger

from standings_engine.data_classes import (
    Histograms,
    Match,
    PlacementCounts,
    PlayerStats,
    Registry,
    Snapshot,
)

logger = get_logger(__name__)


# -------------------------
# Constants
# -------------------------

# Outcome indices are treated as 64-bit masks: bit j selects the winner of match j
MAX_MATCHES = 63

# Log a progress line every this many evaluated outcomes
PROGRESS_INTERVAL = 10_000


# --------------------------- Snapshots ---------------------------

def baseline_stats(registry: Registry) -> Snapshot:
    """Baseline records of every registered player, without placements."""
    return {name: player.stats() for name, player in registry.items()}


def build_snapshot(baseline: Snapshot) -> Snapshot:
    """Independent copy of the baseline for one outcome."""
    return {
        name: PlayerStats(
            name=s.name,
            wins=s.wins,
            losses=s.losses,
            opponent_wins=s.opponent_wins,
            opponent_losses=s.opponent_losses,
            opponents=s.opponents,
        )
        for name, s in baseline.items()
    }


# --------------------------- Outcome propagation ---------------------------

def apply_match(snapshot: Snapshot, winner: str, loser: str) -> None:
    """
    Record one result in the snapshot.

    The winner gains a win and each of the winner's opponents gains an opponent win;
    the loser gains a loss and each of the loser's opponents gains an opponent loss.
    Names missing from the snapshot are skipped.
    """
    winner_stats = snapshot.get(winner)
    if winner_stats is not None:
        winner_stats.wins += 1
        for opp in winner_stats.opponents:
            opp_stats = snapshot.get(opp)
            if opp_stats is not None:
                opp_stats.opponent_wins += 1

    loser_stats = snapshot.get(loser)
    if loser_stats is not None:
        loser_stats.losses += 1
        for opp in loser_stats.opponents:
            opp_stats = snapshot.get(opp)
            if opp_stats is not None:
                opp_stats.opponent_losses += 1


def match_result(match: Match, outcome_index: int, bit: int) -> Tuple[str, str]:
    """(winner, loser) of match for the given outcome: bit 0 -> first wins, bit 1 -> second wins."""
    if (outcome_index >> bit) & 1 == 0:
        return match.first, match.second
    return match.second, match.first


def apply_outcome(snapshot: Snapshot, matches: Sequence[Match], outcome_index: int) -> Snapshot:
    for bit, match in enumerate(matches):
        winner, loser = match_result(match, outcome_index, bit)
        apply_match(snapshot, winner, loser)
    return snapshot


# --------------------------- Ranking ---------------------------

def opponent_win_rate(stats: PlayerStats) -> Optional[float]:
    """Opponents' combined win fraction, or None when they have no recorded games."""
    games = stats.opponent_wins + stats.opponent_losses
    if games == 0:
        return None
    return stats.opponent_wins / games


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def compare_players(p1: PlayerStats, p2: PlayerStats) -> int:
    """
    Ascending order: fewer wins first, then lower opponent win rate, with an undefined
    rate below every defined one. Remaining ties put the later name first, so the
    reversed order lists them alphabetically.
    """
    result = _cmp(p1.wins, p2.wins)
    if result:
        return result

    r1, r2 = opponent_win_rate(p1), opponent_win_rate(p2)
    if r1 is None or r2 is None:
        result = (r1 is not None) - (r2 is not None)
    else:
        result = _cmp(r1, r2)
    if result:
        return result

    return _cmp(p2.name, p1.name)


def rank_snapshot(snapshot: Snapshot) -> List[PlayerStats]:
    """All players of the snapshot, best first."""
    return sorted(snapshot.values(), key=cmp_to_key(compare_players), reverse=True)


# --------------------------- Enumeration ---------------------------

def check_match_count(matches: Sequence[Match]) -> None:
    if len(matches) > MAX_MATCHES:
        raise ValueError(
            f"Too many unplayed matches to enumerate: {len(matches)} (maximum {MAX_MATCHES})"
        )


def outcome_count(num_matches: int, simulation_count: Optional[int] = None) -> int:
    """Number of outcomes to evaluate: the full 2^M space, or a prefix of it."""
    total = 1 << num_matches
    if simulation_count is None:
        return total
    if simulation_count < 0:
        raise ValueError(f"Simulation count must be non-negative, got {simulation_count}")
    return min(simulation_count, total)


def effective_top_ranks(top_ranks: int, num_players: int) -> int:
    if top_ranks < 1:
        raise ValueError(f"Top ranks must be a positive integer, got {top_ranks}")
    if top_ranks > num_players:
        logger.warning("Top ranks %d exceeds player count %d; using %d", top_ranks, num_players, num_players)
        return num_players
    return top_ranks


def evaluate_outcome(baseline: Snapshot, matches: Sequence[Match], top_ranks: int, outcome_index: int) -> List[str]:
    """Final top-K standings (names, best first) for one outcome."""
    snapshot = apply_outcome(build_snapshot(baseline), matches, outcome_index)
    return [s.name for s in rank_snapshot(snapshot)[:top_ranks]]


def record_standings(counts: PlacementCounts, standings: Sequence[str]) -> None:
    for rank, name in enumerate(standings, start=1):
        counts[(name, rank)] += 1


def evaluate_outcome_range(
    baseline: Snapshot,
    matches: Sequence[Match],
    top_ranks: int,
    start: int,
    stop: int,
) -> PlacementCounts:
    """Placement counts for outcomes start..stop-1."""
    counts: PlacementCounts = Counter()
    for outcome_index in range(start, stop):
        record_standings(counts, evaluate_outcome(baseline, matches, top_ranks, outcome_index))
        if outcome_index % PROGRESS_INTERVAL == 0:
            logger.info("Evaluated outcome %d", outcome_index)
    return counts


def outcome_chunks(total: int, chunks: int) -> List[Tuple[int, int]]:
    """Split range(total) into at most `chunks` contiguous, near-equal (start, stop) ranges."""
    chunks = max(1, min(chunks, total))
    size, extra = divmod(total, chunks)
    out = []
    start = 0
    for i in range(chunks):
        stop = start + size + (1 if i < extra else 0)
        if stop > start:
            out.append((start, stop))
        start = stop
    return out


def enumerate_outcomes(
    registry: Registry,
    matches: Sequence[Match],
    top_ranks: int,
    simulation_count: Optional[int] = None,
    workers: int = 1,
) -> Tuple[PlacementCounts, int]:
    """
    Evaluate the first N outcomes of the 2^M outcome space and count top-K placements.

    With workers > 1 the outcome range is split into contiguous chunks evaluated in
    separate processes; each chunk returns its own counts, summed once all finish.

    Returns (placement counts keyed by (name, rank), number of outcomes evaluated).
    """
    check_match_count(matches)
    total = outcome_count(len(matches), simulation_count)
    top_ranks = effective_top_ranks(top_ranks, len(registry))
    baseline = baseline_stats(registry)

    logger.info(
        "Enumerating %d of %d outcomes for %d matches and %d players",
        total, 1 << len(matches), len(matches), len(registry),
    )

    ranges = outcome_chunks(total, workers)
    if workers <= 1 or len(ranges) <= 1:
        counts: PlacementCounts = Counter()
        for start, stop in ranges:
            counts.update(evaluate_outcome_range(baseline, matches, top_ranks, start, stop))
        return counts, total

    counts = Counter()
    with ProcessPoolExecutor(max_workers=workers) as executor:
        futures = [
            executor.submit(evaluate_outcome_range, baseline, list(matches), top_ranks, start, stop)
            for start, stop in ranges
        ]
        for future in futures:
            counts.update(future.result())
    return counts, total


# --------------------------- Aggregation ---------------------------

def apply_histograms(registry: Registry, histograms: Histograms) -> None:
    """Add per-player rank counts into the registry players' placement histograms."""
    for name, placements in histograms.items():
        player = registry.get(name)
        if player is None:
            continue
        for rank, count in placements.items():
            player.add_placement(rank, count)


def apply_placements(registry: Registry, counts: PlacementCounts) -> None:
    apply_histograms(registry, histograms_from_counts(counts))


def placement_histograms(registry: Registry) -> Histograms:
    """name -> rank -> count for every player that placed at least once, ordered by name and rank."""
    return {
        name: {rank: registry[name].placements[rank] for rank in sorted(registry[name].placements)}
        for name in sorted(registry)
        if registry[name].placements
    }


def histograms_from_counts(counts: PlacementCounts) -> Histograms:
    out: Histograms = {}
    for (name, rank), count in sorted(counts.items()):
        out.setdefault(name, {})[rank] = count
    return out
