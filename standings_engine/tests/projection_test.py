import random
from functools import cmp_to_key

import pytest

from standings_engine.data_classes import Opponents, Player, PlayerStats
from standings_engine.data_helpers import dedupe_matches, parse_matches, parse_players
from standings_engine.projection_helpers import (
    MAX_MATCHES,
    apply_match,
    apply_outcome,
    apply_placements,
    baseline_stats,
    build_snapshot,
    compare_players,
    enumerate_outcomes,
    evaluate_outcome,
    match_result,
    opponent_win_rate,
    outcome_chunks,
    outcome_count,
    placement_histograms,
    rank_snapshot,
)
from standings_engine.projection_pipeline import project_standings
from standings_engine.tests.data.test_projection_data import (
    raw_pool_players,
    raw_pool_matches,
    expected_pool_rankings,
    expected_pool_outcome_1_stats,
    expected_pool_top_2,
    expected_pool_top_4,
    expected_pool_top_2_first_two,
)


def _pool():
    return parse_players(raw_pool_players), parse_matches(raw_pool_matches)


def _stats(name, wins=0, losses=0, opp_wins=0, opp_losses=0, opponents=("W", "X", "Y", "Z")):
    return PlayerStats(name, wins, losses, opp_wins, opp_losses, Opponents(opponents))


def _player(name, wins=0, losses=0, opponents=("W", "X", "Y", "Z")):
    return Player(name, wins, losses, 0, 0, Opponents(opponents))


# Outcome propagation
def test_apply_match_updates_winner_loser_and_their_opponents():
    registry, _ = _pool()
    snapshot = build_snapshot(baseline_stats(registry))

    apply_match(snapshot, "Alpha", "Delta")

    assert (snapshot["Alpha"].wins, snapshot["Alpha"].losses) == (3, 1)
    assert (snapshot["Delta"].wins, snapshot["Delta"].losses) == (1, 3)
    # Alpha's opponents (Bravo, Charlie, Delta) gain an opponent win
    assert snapshot["Bravo"].opponent_wins == 6
    assert snapshot["Charlie"].opponent_wins == 5
    assert snapshot["Delta"].opponent_wins == 4
    # Delta's opponents (Alpha, Bravo, Charlie) gain an opponent loss
    assert snapshot["Alpha"].opponent_losses == 5
    assert snapshot["Bravo"].opponent_losses == 4
    assert snapshot["Charlie"].opponent_losses == 5
    assert "Ghost" not in snapshot


def test_apply_match_ignores_unknown_players():
    snapshot = {"A": _stats("A")}
    apply_match(snapshot, "Nobody", "A")
    apply_match(snapshot, "A", "Nobody")
    assert (snapshot["A"].wins, snapshot["A"].losses) == (1, 1)
    assert (snapshot["A"].opponent_wins, snapshot["A"].opponent_losses) == (0, 0)


def test_snapshots_do_not_touch_the_registry():
    registry, matches = _pool()
    baseline = baseline_stats(registry)
    apply_outcome(build_snapshot(baseline), matches, 3)

    assert baseline["Alpha"].wins == 2
    assert registry["Alpha"].wins == 2
    assert registry["Bravo"].opponent_wins == 5


def test_outcome_snapshot_values():
    registry, matches = _pool()
    snapshot = apply_outcome(build_snapshot(baseline_stats(registry)), matches, 1)
    actual = {
        name: (s.wins, s.losses, s.opponent_wins, s.opponent_losses)
        for name, s in snapshot.items()
    }
    assert actual == expected_pool_outcome_1_stats


def test_propagation_is_order_independent():
    registry, matches = _pool()
    baseline = baseline_stats(registry)
    results = [match_result(m, 2, bit) for bit, m in enumerate(matches)]

    def snapshot_values(order):
        snapshot = build_snapshot(baseline)
        for winner, loser in order:
            apply_match(snapshot, winner, loser)
        return {n: (s.wins, s.losses, s.opponent_wins, s.opponent_losses) for n, s in snapshot.items()}

    expected = snapshot_values(results)
    rng = random.Random(7)
    for _ in range(5):
        shuffled = list(results)
        rng.shuffle(shuffled)
        assert snapshot_values(shuffled) == expected


def test_match_result_bits():
    registry, matches = _pool()
    assert match_result(matches[0], 0, 0) == ("Charlie", "Bravo")
    assert match_result(matches[0], 1, 0) == ("Bravo", "Charlie")
    assert match_result(matches[1], 1, 1) == ("Delta", "Alpha")
    assert match_result(matches[1], 2, 1) == ("Alpha", "Delta")


# Ranking
def test_opponent_win_rate_undefined_without_games():
    assert opponent_win_rate(_stats("A")) is None
    assert opponent_win_rate(_stats("A", opp_wins=3, opp_losses=1)) == 0.75
    assert opponent_win_rate(_stats("A", opp_wins=0, opp_losses=4)) == 0.0


def test_compare_players_orders_by_wins_then_rate():
    low = _stats("A", wins=1, opp_wins=9, opp_losses=1)
    high = _stats("B", wins=2, opp_wins=0, opp_losses=9)
    assert compare_players(low, high) < 0
    assert compare_players(high, low) > 0

    weak_schedule = _stats("C", wins=2, opp_wins=1, opp_losses=3)
    strong_schedule = _stats("D", wins=2, opp_wins=3, opp_losses=1)
    assert compare_players(weak_schedule, strong_schedule) < 0


def test_undefined_rate_sorts_below_any_defined_rate():
    undefined = _stats("A", wins=2)
    zero_rate = _stats("B", wins=2, opp_wins=0, opp_losses=5)
    assert compare_players(undefined, zero_rate) < 0
    assert compare_players(zero_rate, undefined) > 0
    assert [s.name for s in rank_snapshot({"A": undefined, "B": zero_rate})] == ["B", "A"]


def test_equal_records_rank_by_name():
    players = [_stats(n, wins=1, opp_wins=2, opp_losses=2) for n in ("Cy", "Al", "Bo")]
    snapshot = {p.name: p for p in players}
    assert [s.name for s in rank_snapshot(snapshot)] == ["Al", "Bo", "Cy"]
    assert compare_players(players[0], players[0]) == 0
    assert compare_players(players[0], players[1]) != 0


def test_ranking_is_a_strict_total_order():
    rng = random.Random(11)
    players = [
        _stats(f"P{i}", wins=rng.randint(0, 2), opp_wins=rng.randint(0, 2), opp_losses=rng.randint(0, 2))
        for i in range(12)
    ]
    for a in players:
        for b in players:
            if a.name != b.name:
                assert compare_players(a, b) == -compare_players(b, a) != 0
    # Sorting from any starting order gives the same ranking
    expected = sorted(players, key=cmp_to_key(compare_players))
    for _ in range(5):
        shuffled = list(players)
        rng.shuffle(shuffled)
        assert sorted(shuffled, key=cmp_to_key(compare_players)) == expected


# Enumeration
def test_outcome_count_clamps_to_outcome_space():
    assert outcome_count(0) == 1
    assert outcome_count(3) == 8
    assert outcome_count(3, 5) == 5
    assert outcome_count(3, 100) == 8
    assert outcome_count(2, 0) == 0
    with pytest.raises(ValueError):
        outcome_count(2, -1)


def test_outcome_chunks_cover_the_range():
    assert outcome_chunks(10, 3) == [(0, 4), (4, 7), (7, 10)]
    assert outcome_chunks(2, 8) == [(0, 1), (1, 2)]
    assert outcome_chunks(0, 4) == []
    assert outcome_chunks(5, 1) == [(0, 5)]


def test_each_outcome_ranking():
    registry, matches = _pool()
    baseline = baseline_stats(registry)
    for outcome_index, expected in expected_pool_rankings.items():
        assert evaluate_outcome(baseline, matches, 4, outcome_index) == expected
        assert evaluate_outcome(baseline, matches, 2, outcome_index) == expected[:2]


def test_enumerate_top_2():
    registry, matches = _pool()
    counts, outcomes = enumerate_outcomes(registry, matches, 2)
    assert outcomes == 4
    assert sum(counts.values()) == outcomes * 2
    apply_placements(registry, counts)
    assert placement_histograms(registry) == expected_pool_top_2
    assert registry["Charlie"].placements == {}


def test_enumerate_top_4():
    registry, matches = _pool()
    assert project_standings(registry, matches, 4) == 4
    assert placement_histograms(registry) == expected_pool_top_4


def test_enumerate_with_cap_uses_outcome_prefix():
    registry, matches = _pool()
    assert project_standings(registry, matches, 2, simulation_count=2) == 2
    assert placement_histograms(registry) == expected_pool_top_2_first_two

    registry, matches = _pool()
    assert project_standings(registry, matches, 2, simulation_count=1000) == 4
    assert placement_histograms(registry) == expected_pool_top_2


def test_enumeration_is_deterministic():
    registry, matches = _pool()
    first, _ = enumerate_outcomes(registry, matches, 3)
    second, _ = enumerate_outcomes(registry, matches, 3)
    assert first == second


def test_parallel_enumeration_matches_serial():
    registry, matches = _pool()
    serial, serial_outcomes = enumerate_outcomes(registry, matches, 3, workers=1)
    parallel, parallel_outcomes = enumerate_outcomes(registry, matches, 3, workers=3)
    assert serial_outcomes == parallel_outcomes == 4
    assert serial == parallel


def test_three_player_scenario():
    registry = {p.name: p for p in (_player("A"), _player("B"), _player("C"))}
    matches = dedupe_matches([("A", "B")])
    baseline = baseline_stats(registry)

    # Outcome 0: first-listed (B) wins; A and C tie at zero wins and resolve by name
    assert evaluate_outcome(baseline, matches, 3, 0) == ["B", "A", "C"]
    # Outcome 1: A wins
    assert evaluate_outcome(baseline, matches, 3, 1) == ["A", "B", "C"]

    assert project_standings(registry, matches, 2) == 2
    assert placement_histograms(registry) == {"A": {1: 1, 2: 1}, "B": {1: 1, 2: 1}}

    registry = {p.name: p for p in (_player("A"), _player("B"), _player("C"))}
    project_standings(registry, matches, 3)
    assert registry["C"].placements == {3: 2}


def test_no_remaining_matches_ranks_baseline_once():
    registry = {
        "A": Player("A", 1, 2, 3, 3, Opponents(("B", "C", "X", "Y"))),
        "B": Player("B", 2, 1, 1, 3, Opponents(("A", "C", "X", "Y"))),
        "C": Player("C", 1, 2, 4, 2, Opponents(("A", "B", "X", "Y"))),
    }
    counts, outcomes = enumerate_outcomes(registry, [], 3)
    assert outcomes == 1
    apply_placements(registry, counts)
    assert placement_histograms(registry) == {"B": {1: 1}, "C": {2: 1}, "A": {3: 1}}


def test_standings_have_no_duplicates_and_clamp_to_player_count():
    registry, matches = _pool()
    baseline = baseline_stats(registry)
    for outcome_index in range(4):
        standings = evaluate_outcome(baseline, matches, 4, outcome_index)
        assert len(standings) == len(set(standings)) == 4

    counts, outcomes = enumerate_outcomes(registry, matches, 10)
    assert sum(counts.values()) == outcomes * len(registry)


def test_enumeration_rejects_invalid_parameters():
    registry, matches = _pool()
    with pytest.raises(ValueError):
        enumerate_outcomes(registry, matches, 0)
    with pytest.raises(ValueError):
        enumerate_outcomes(registry, matches, 2, simulation_count=-3)

    names = [f"P{i:02d}" for i in range(MAX_MATCHES + 2)]
    too_many = dedupe_matches(zip(names, names[1:]))
    assert len(too_many) == MAX_MATCHES + 1
    with pytest.raises(ValueError):
        enumerate_outcomes(registry, too_many, 2, simulation_count=1)
