from typing import Annotated

from fastapi import Depends, HTTPException, Request

from apps.api.tickets.engine import LifecycleEngine
from apps.api.tickets.stats import StatsAggregator


async def get_lifecycle_engine(request: Request) -> LifecycleEngine:
    engine = getattr(request.app.state, "lifecycle_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Ticket engine is not available")
    return engine


async def get_stats_aggregator(request: Request) -> StatsAggregator:
    stats = getattr(request.app.state, "stats_aggregator", None)
    if stats is None:
        raise HTTPException(status_code=503, detail="Ticket statistics are not available")
    return stats


EngineDep = Annotated[LifecycleEngine, Depends(get_lifecycle_engine)]
StatsDep = Annotated[StatsAggregator, Depends(get_stats_aggregator)]
