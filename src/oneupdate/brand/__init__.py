"""Brand-site components: plugin host, snapshot cache, lifecycle hooks, options endpoint."""

from .cache import PluginStateCache, derive_identifier
from .hooks import PluginLifecycleHooks
from .host import InstalledPlugin, PluginHost, WpCliPluginHost
from .options import PluginOptionsService

__all__ = [
    "InstalledPlugin",
    "PluginHost",
    "PluginLifecycleHooks",
    "PluginOptionsService",
    "PluginStateCache",
    "WpCliPluginHost",
    "derive_identifier",
]
