"""Microsoft Graph access: retrying fetch, bounded concurrency, typed records."""

from teams_proxy.graph.budget import RequestBudget
from teams_proxy.graph.client import GraphClient, graph_client
from teams_proxy.graph.concurrency import Fulfilled, Rejected, run_bounded
from teams_proxy.graph.retry import GraphRequest, RetryPolicy, fetch_with_retry

__all__ = [
    "GraphClient",
    "GraphRequest",
    "RequestBudget",
    "RetryPolicy",
    "fetch_with_retry",
    "run_bounded",
    "Fulfilled",
    "Rejected",
    "graph_client",
]
