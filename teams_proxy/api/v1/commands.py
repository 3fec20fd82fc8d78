"""Command API endpoint."""

from typing import Any

import structlog
from fastapi import APIRouter, Body, HTTPException

from teams_proxy.commands import CommandContext, decode_command
from teams_proxy.graph.client import graph_client
from teams_proxy.graph.errors import CredentialError, GraphError, InputValidationError
from teams_proxy.stats.aggregator import message_stats_aggregator

logger = structlog.get_logger()

router = APIRouter()


@router.post("")
async def run_command(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Decode the body into a command and run it against Graph."""
    try:
        command = decode_command(payload)
    except InputValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    ctx = CommandContext(client=graph_client, aggregator=message_stats_aggregator)
    try:
        result = await command.execute(ctx)
    except InputValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except CredentialError as e:
        logger.error("Graph credential rejected", action=command.action, error=str(e))
        raise HTTPException(status_code=401, detail="Graph credential rejected")
    except GraphError as e:
        logger.error("Command failed", action=command.action, error=str(e))
        raise HTTPException(status_code=502, detail=f"Command {command.action} failed")

    return {"action": command.action, "result": result.model_dump(mode="json")}
