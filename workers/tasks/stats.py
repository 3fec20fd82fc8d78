"""Background team statistics collection."""

import asyncio

import structlog
from redis.exceptions import RedisError

from teams_proxy.graph.errors import CredentialError, GraphError
from workers.celery_app import app

logger = structlog.get_logger()


def run_async(coro):
    """Helper to run async code in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@app.task(bind=True, max_retries=3, default_retry_delay=300)
def collect_team_stats(self, team_id: str):
    """Compute message statistics for one team and store them."""
    try:
        return run_async(_collect_team_stats(team_id))
    except CredentialError as e:
        # Not retried
        logger.error("Graph credential rejected", team_id=team_id, error=str(e))
        return {"status": "error", "team_id": team_id, "message": str(e)}
    except (GraphError, RedisError) as e:
        raise self.retry(exc=e)


async def _collect_team_stats(team_id: str, client=None) -> dict:
    """Async implementation of a single team's collection."""
    from teams_proxy.graph.client import GraphClient
    from teams_proxy.stats.aggregator import MessageStatsAggregator
    from teams_proxy.store import redis_client, stats_store

    # Fresh clients per task: each task runs on its own event loop
    client = client or GraphClient()
    try:
        await client.connect()
        await redis_client.connect()
        stats = await MessageStatsAggregator(client).compute(team_id)
        await stats_store.save(stats)
    finally:
        try:
            await client.disconnect()
        finally:
            await redis_client.close()

    logger.info(
        "Team stats collected",
        team_id=team_id,
        total=stats.total_count,
        recent=stats.recent_count,
        partial=stats.partial,
    )
    return {
        "status": "success",
        "team_id": team_id,
        "total_count": stats.total_count,
        "partial": stats.partial,
    }


@app.task(bind=True, max_retries=3, default_retry_delay=300)
def collect_all_team_stats(self):
    """List every team and queue one collection task for each."""
    try:
        team_ids = run_async(_list_team_ids())
    except GraphError as e:
        logger.error("Failed to list teams", error=str(e))
        raise self.retry(exc=e)

    for team_id in team_ids:
        collect_team_stats.delay(team_id)

    logger.info("Queued team stats collection", teams=len(team_ids))
    return {"status": "queued", "teams": len(team_ids)}


async def _list_team_ids(client=None) -> list[str]:
    from teams_proxy.graph.client import GraphClient

    client = client or GraphClient()
    try:
        await client.connect()
        teams = await client.list_teams()
    finally:
        await client.disconnect()
    return [team.id for team in teams]
