"""Fleet orchestration: aggregation, action resolution, version policy and dispatch."""
