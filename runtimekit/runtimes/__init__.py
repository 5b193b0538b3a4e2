"""
Runtime plugins for runtimekit.

The set of runtimes is fixed; look one up by name:

    from runtimekit.runtimes import get_plugin

    plugin = get_plugin("node")
    print(plugin.archive_url(plugin.parse_version("20.10.0")))
"""

from typing import Dict, Optional, Type

from runtimekit.core.platform import PlatformInfo
from runtimekit.runtimes.base import CatalogEntry, RuntimePlugin
from runtimekit.runtimes.go import GoPlugin
from runtimekit.runtimes.node import NodePlugin
from runtimekit.runtimes.python import PythonPlugin
from runtimekit.runtimes.rust import RustPlugin

PLUGINS: Dict[str, Type[RuntimePlugin]] = {
    NodePlugin.name: NodePlugin,
    RustPlugin.name: RustPlugin,
    PythonPlugin.name: PythonPlugin,
    GoPlugin.name: GoPlugin,
}


def get_plugin(
    name: str, platform: Optional[PlatformInfo] = None, mirror: Optional[str] = None
) -> RuntimePlugin:
    """
    Create the plugin for a runtime.

    Args:
        name: Runtime name ('node', 'rust', 'python', 'go')
        platform: Target platform (detected if None)
        mirror: Download base URL override

    Raises:
        ValueError: If name is not a supported runtime
    """
    try:
        plugin_class = PLUGINS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown runtime '{name}'. Supported: {', '.join(sorted(PLUGINS))}"
        ) from None
    return plugin_class(platform=platform, mirror=mirror)


__all__ = [
    "PLUGINS",
    "CatalogEntry",
    "RuntimePlugin",
    "NodePlugin",
    "RustPlugin",
    "PythonPlugin",
    "GoPlugin",
    "get_plugin",
]
