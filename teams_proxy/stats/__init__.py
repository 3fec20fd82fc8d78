"""Team message statistics."""

from teams_proxy.stats.aggregator import MessageStatsAggregator, StatsAccumulator
from teams_proxy.stats.schemas import TeamMessageStats

__all__ = ["MessageStatsAggregator", "StatsAccumulator", "TeamMessageStats"]
