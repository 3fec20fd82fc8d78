"""Team statistics and directory API endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Query
from redis.exceptions import RedisError

from teams_proxy.commands import CommandContext, ListTeams, TeamDirectoryResult
from teams_proxy.graph.client import graph_client
from teams_proxy.graph.errors import CredentialError, GraphError, InputValidationError
from teams_proxy.stats.aggregator import message_stats_aggregator
from teams_proxy.stats.schemas import TeamMessageStats
from teams_proxy.store import stats_store

logger = structlog.get_logger()

router = APIRouter()


@router.get("", response_model=TeamDirectoryResult)
async def list_teams(
    name_filter: str = Query(default="", description="Case-insensitive substring of the team name"),
    description_filter: str = Query(default="", description="Case-insensitive substring of the description"),
) -> TeamDirectoryResult:
    """List public teams with their member and guest counts."""
    command = ListTeams(name_filter=name_filter, description_filter=description_filter)
    ctx = CommandContext(client=graph_client, aggregator=message_stats_aggregator)
    try:
        return await command.execute(ctx)
    except CredentialError as e:
        logger.error("Graph credential rejected", error=str(e))
        raise HTTPException(status_code=401, detail="Graph credential rejected")
    except GraphError as e:
        logger.error("Failed to list teams", error=str(e))
        raise HTTPException(status_code=502, detail="Failed to list teams")


@router.get("/{team_id}/stats", response_model=TeamMessageStats)
async def get_team_stats(
    team_id: str,
    refresh: bool = Query(default=False, description="Ignore the cached record"),
) -> TeamMessageStats:
    """Get message statistics for a team, from cache unless refresh is set."""
    if not refresh:
        try:
            cached = await stats_store.get(team_id)
        except (RuntimeError, RedisError) as e:
            logger.warning("Stats cache unavailable", team_id=team_id, error=str(e))
            cached = None
        if cached is not None:
            return cached

    try:
        stats = await message_stats_aggregator.compute(team_id)
    except InputValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except CredentialError as e:
        logger.error("Graph credential rejected", team_id=team_id, error=str(e))
        raise HTTPException(status_code=401, detail="Graph credential rejected")
    except GraphError as e:
        logger.error("Failed to compute team stats", team_id=team_id, error=str(e))
        raise HTTPException(status_code=502, detail="Failed to compute team stats")

    try:
        await stats_store.save(stats)
    except (RuntimeError, RedisError) as e:
        logger.warning("Failed to store team stats", team_id=team_id, error=str(e))
    return stats


@router.post("/stats/collect", status_code=202)
async def collect_all_stats() -> dict[str, Any]:
    """Queue background stats collection for every team."""
    from workers.tasks.stats import collect_all_team_stats

    result = collect_all_team_stats.delay()
    logger.info("Queued stats collection", task_id=result.id)
    return {"status": "queued", "task_id": result.id}
