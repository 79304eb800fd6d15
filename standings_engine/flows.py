from prefect import serve

from standings_engine.projection_pipeline import (
    standings_projection_flow
)

if __name__ == "__main__":
    """
    Serve the Standings Projection flow.
    """
    # Set up the Standings Projection deployment; players/matches/top_ranks are supplied per run
    standings_projection_deployment = standings_projection_flow.to_deployment(
        "standings-projection",
        tags=["standings", "projection"],
    )

    # Serve the flows
    serve(standings_projection_deployment)  # type: ignore
