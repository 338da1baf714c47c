"""Domain models, errors and orchestration for OneUpdate."""

from .errors import OneUpdateError
from .models import (
    ActionReport,
    ActionRequest,
    DispatchTicket,
    ExecutionResult,
    FleetPluginRecord,
    Operation,
    PluginLocalRecord,
    PluginMap,
    PluginState,
    PluginVisibility,
    RunRef,
    Site,
    SiteStatus,
    SiteType,
)

__all__ = [
    "ActionReport",
    "ActionRequest",
    "DispatchTicket",
    "ExecutionResult",
    "FleetPluginRecord",
    "OneUpdateError",
    "Operation",
    "PluginLocalRecord",
    "PluginMap",
    "PluginState",
    "PluginVisibility",
    "RunRef",
    "Site",
    "SiteStatus",
    "SiteType",
]
