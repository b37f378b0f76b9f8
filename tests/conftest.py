import sys
import os

# Add the 'src' directory to the Python path
# This allows pytest to find modules in the 'mcp_optimizer' package
added_path = os.path.abspath(os.path.join(os.path.dirname(__file__), '../src'))
sys.path.insert(0, added_path)

import pytest  # noqa: E402

from mcp_optimizer.registry.scoring_rules import load_scoring_rules  # noqa: E402
from mcp_optimizer.registry.tool_registry import load_tool_registry  # noqa: E402
from mcp_optimizer.runtime.metrics_tracker import MetricsTracker  # noqa: E402
from mcp_optimizer.runtime.optimization_manager import OptimizationManager  # noqa: E402
from mcp_optimizer.runtime.resource_probe import StaticResourceProbe  # noqa: E402
from mcp_optimizer.schemas.optimization import ResourceUtilization  # noqa: E402
from mcp_optimizer.utils.clock import ManualClock  # noqa: E402
from mcp_optimizer.utils.config_manager import OptimizerConfiguration  # noqa: E402


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def probe() -> StaticResourceProbe:
    return StaticResourceProbe(ResourceUtilization(cpu=35.0, memory=50.0, network=10.0, disk=5.0))


@pytest.fixture(scope="session")
def registry():
    return load_tool_registry()


@pytest.fixture(scope="session")
def rules():
    return load_scoring_rules()


@pytest.fixture
def tracker(clock) -> MetricsTracker:
    return MetricsTracker(clock=clock)


@pytest.fixture
def config() -> OptimizerConfiguration:
    return OptimizerConfiguration()


@pytest.fixture
def manager(config, registry, rules, clock, probe):
    """Manager with a manual clock and a fixed resource probe; monitoring thread off."""
    with OptimizationManager(config=config, registry=registry, rules=rules, clock=clock, resource_probe=probe) as m:
        yield m
