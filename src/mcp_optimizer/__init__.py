from importlib import import_module

__version__ = "0.1.0"

# Lazy import to keep ``import mcp_optimizer`` cheap

def __getattr__(name):
    """Lazy-import top-level symbols.

    Supports:
    • ``OptimizationManager`` – defers the runtime import until requested.
    • First-level sub-modules (e.g. ``mcp_optimizer.registry``).
    """

    if name == "OptimizationManager":
        manager_module = import_module("mcp_optimizer.runtime.optimization_manager")
        return manager_module.OptimizationManager

    try:
        return import_module(f"mcp_optimizer.{name}")
    except ModuleNotFoundError:
        raise AttributeError(name) from None

__all__ = [
    "OptimizationManager",
    "__version__",
]

from . import schemas  # noqa: E402
from . import utils  # noqa: E402
