from __future__ import annotations

import argparse
import os
import sys
from typing import List, Optional

from prefect import flow, get_run_logger, task
from psycopg2.extras import execute_values

from standings_engine.data_classes import Histograms, Match, Registry
from standings_engine.data_helpers import (
    DEFAULT_PREFIX_LENGTH,
    format_report,
    load_matches,
    load_players,
    placement_odds_frame,
)
from standings_engine.database_helpers import ensure_placements_table, get_database_connection
from standings_engine.projection_helpers import (
    apply_histograms,
    apply_placements,
    enumerate_outcomes,
    histograms_from_counts,
    placement_histograms,
)


# -------------------------
# Config
# -------------------------

DEFAULT_WORKERS = int(os.getenv("PROJECTION_WORKERS", "1"))


# -------------------------
# Helpers
# -------------------------


def retry_on_io_error(task, task_run, state) -> bool:
    """
    Retry condition for the loading tasks: retry failed reads, not malformed input.
    """
    try:
        state.result()
    except ValueError:
        return False
    except Exception:
        return True
    return False


# -------------------------
# Prefect tasks & flow
# -------------------------


@task(retries=2, retry_delay_seconds=10, retry_condition_fn=retry_on_io_error, task_run_name="Load Players from {path}")
def load_players_task(path: str, prefix_length: int = DEFAULT_PREFIX_LENGTH) -> Registry:
    logger = get_run_logger()
    registry = load_players(path, prefix_length)
    logger.info("Loaded %d players", len(registry))
    return registry


@task(retries=2, retry_delay_seconds=10, retry_condition_fn=retry_on_io_error, task_run_name="Load Matches from {path}")
def load_matches_task(path: str, prefix_length: int = DEFAULT_PREFIX_LENGTH) -> List[Match]:
    logger = get_run_logger()
    matches = load_matches(path, prefix_length)
    logger.info("Loaded %d unplayed matches", len(matches))
    return matches


@task(task_run_name="Project Placements for Top {top_ranks}")
def project_placements_task(
    registry: Registry,
    matches: List[Match],
    top_ranks: int,
    simulation_count: Optional[int] = None,
    workers: int = 1,
) -> dict:
    """
    Enumerate outcomes of the unplayed matches and return
    {"outcomes": N, "histograms": {name: {rank: count}}}.
    """
    logger = get_run_logger()
    counts, outcomes = enumerate_outcomes(registry, matches, top_ranks, simulation_count, workers)
    logger.info("Evaluated %d outcomes", outcomes)
    return {"outcomes": outcomes, "histograms": histograms_from_counts(counts)}


@task(task_run_name="Write Placement Report")
def write_report_task(histograms: Histograms, output: Optional[str] = None) -> str:
    logger = get_run_logger()
    report = format_report(histograms)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(report)
        logger.info("Wrote placement report: %s", output)
    else:
        sys.stdout.write(report)
    return report


@task(task_run_name="Write Placement Odds to {path}")
def write_odds_task(histograms: Histograms, outcomes: int, top_ranks: int, path: str) -> int:
    logger = get_run_logger()
    df = placement_odds_frame(histograms, outcomes, top_ranks)
    df.to_csv(path, index=False, float_format="%.6f")
    logger.info("Wrote placement odds for %d players: %s", len(df), path)
    return len(df)


@task(retries=2, retry_delay_seconds=10, task_run_name="Write Placement Histograms")
def write_placements(histograms: Histograms, outcomes: int) -> int:
    """
    Replace the stored placement histograms with this run's histograms.
    Returns the number of rows written.
    """
    rows_data = [
        (name, rank, count, outcomes)
        for name, placements in histograms.items()
        for rank, count in placements.items()
    ]
    sql = """
        INSERT INTO placement_histograms (player, rank, count, outcomes)
        VALUES %s
        ON CONFLICT (player, rank) DO UPDATE SET
            count    = EXCLUDED.count,
            outcomes = EXCLUDED.outcomes
    """
    with get_database_connection() as conn:
        with conn.cursor() as cur:
            ensure_placements_table(cur)
            # Ranks and players from earlier runs must not survive
            cur.execute("DELETE FROM placement_histograms")
            if rows_data:
                execute_values(cur, sql, rows_data, template="(%s,%s,%s,%s)")
        conn.commit()
    return len(rows_data)


@flow(name="Standings Projection Flow")
def standings_projection_flow(
    players_path: str,
    matches_path: str,
    top_ranks: int,
    simulation_count: Optional[int] = None,
    output: Optional[str] = None,
    odds_csv: Optional[str] = None,
    workers: int = 1,
    prefix_length: int = DEFAULT_PREFIX_LENGTH,
    persist: bool = False,
) -> Histograms:
    """
    Load players and unplayed matches, enumerate every outcome (or the first simulation_count),
    and report how often each player finished at each of the top ranks.
    """
    logger = get_run_logger()
    logger.info("Running standings projection for top %d ranks", top_ranks)

    registry = load_players_task(players_path, prefix_length)
    matches = load_matches_task(matches_path, prefix_length)

    projection = project_placements_task(registry, matches, top_ranks, simulation_count, workers)
    outcomes = projection["outcomes"]
    apply_histograms(registry, projection["histograms"])
    histograms = placement_histograms(registry)

    write_report_task(histograms, output)
    if odds_csv:
        write_odds_task(histograms, outcomes, min(top_ranks, len(registry)), odds_csv)
    if persist:
        written = write_placements(histograms, outcomes)
        logger.info("Wrote %d placement rows to the database", written)

    return histograms


def project_standings(
    registry: Registry,
    matches: List[Match],
    top_ranks: int,
    simulation_count: Optional[int] = None,
    workers: int = 1,
) -> int:
    """
    Run the projection outside of a flow, filling the registry players' placements.
    Returns the number of outcomes evaluated.
    """
    counts, outcomes = enumerate_outcomes(registry, matches, top_ranks, simulation_count, workers)
    apply_placements(registry, counts)
    return outcomes


# -------------------------
# CLI helpers
# -------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Project final standings of a partially-played tournament")
    ap.add_argument("-p", "--players", required=True, help="CSV file with player records")
    ap.add_argument("-m", "--matches", required=True, help="CSV file with unplayed matches")
    ap.add_argument("-o", "--output", help="File for writing the report (default: stdout)")
    ap.add_argument("-n", "--simulation-count", type=int, help="Number of outcomes to evaluate (default: all)")
    ap.add_argument("-t", "--top-ranks", type=int, required=True, help="Number of top ranks to tally per outcome")
    ap.add_argument("-w", "--workers", type=int, default=DEFAULT_WORKERS, help="Worker processes for enumeration")
    ap.add_argument("--prefix-length", type=int, default=DEFAULT_PREFIX_LENGTH,
                    help="Characters stripped from the start of every name")
    ap.add_argument("--odds-csv", help="Also write per-rank odds as CSV to this file")
    ap.add_argument("--persist", action="store_true", help="Upsert placement histograms into PostgreSQL")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    standings_projection_flow(
        players_path=args.players,
        matches_path=args.matches,
        top_ranks=args.top_ranks,
        simulation_count=args.simulation_count,
        output=args.output,
        odds_csv=args.odds_csv,
        workers=args.workers,
        prefix_length=args.prefix_length,
        persist=args.persist,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
