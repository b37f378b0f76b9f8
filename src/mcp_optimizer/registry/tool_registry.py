"""
Tool Registry

Single source of truth for static tool knowledge: which server owns a tool,
what category it belongs to, its resource profile and context flags, the
fallback routes declared for it, per-server connection settings and the
baseline tool set of every agent type.

The selector, the router and the pattern catalog all consult the same
``ToolRegistry`` instance so the tool maps cannot drift apart.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..schemas.common_enums import OptimizationLevel, ToolCategory
from ..schemas.optimization import AgentTaskContext, IntegrationPattern, ResourceUtilization
from ..utils.config_manager import ConfigurationFileError, ConfigurationLoader, ConfigurationValidationError

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_REGISTRY_PATH = DATA_DIR / "tool_registry.yaml"


class ServerConfiguration(BaseModel):
    """Connection settings for one server. Unknown keys are kept as server-specific options."""
    model_config = ConfigDict(extra='allow')

    timeout_ms: int = Field(10000, ge=0)
    retry_attempts: int = Field(2, ge=0)
    batch_size: int = Field(5, ge=1)
    priority: str = "medium"


class ToolDescriptor(BaseModel):
    name: str
    server: Optional[str] = Field(None, description="Owning server, None when it cannot be resolved.")
    category: ToolCategory = ToolCategory.GENERAL
    external: bool = Field(False, description="Tool reaches outside the local environment.")
    memory: bool = Field(False, description="Tool answers from stored memory rather than live data.")
    resources: ResourceUtilization = Field(default_factory=ResourceUtilization)


class AlternateRoute(BaseModel):
    """Statically declared fallback server for a tool."""
    server: str
    rationale: str
    overhead_ms: float = Field(0.0, ge=0.0)
    reliability: float = Field(1.0, ge=0.0, le=1.0)


class AgentDefinition(BaseModel):
    model_config = ConfigDict(extra='forbid')

    domain_tools: List[str] = Field(default_factory=list)
    selection_strategy: str = "balanced"
    optimization_level: OptimizationLevel = OptimizationLevel.MEDIUM
    workflow_pattern: str = "general"


class _ToolEntry(BaseModel):
    model_config = ConfigDict(extra='forbid')

    server: Optional[str] = None
    category: ToolCategory = ToolCategory.GENERAL
    external: bool = False
    memory: bool = False
    resources: Optional[ResourceUtilization] = None


class RegistryDocument(BaseModel):
    """Validated shape of a registry YAML file."""
    model_config = ConfigDict(extra='forbid')

    version: int = 1
    default_category: ToolCategory = ToolCategory.GENERAL
    default_resources: ResourceUtilization = Field(
        default_factory=lambda: ResourceUtilization(cpu=20, memory=20, network=20, disk=20)
    )
    universal_tools: List[str] = Field(default_factory=list)
    mandatory_tools: List[str] = Field(default_factory=list)
    memory_triggers: Dict[str, List[str]] = Field(default_factory=dict)
    servers: Dict[str, ServerConfiguration] = Field(default_factory=dict)
    tools: Dict[str, _ToolEntry] = Field(default_factory=dict)
    alternates: Dict[str, List[AlternateRoute]] = Field(default_factory=dict)
    agents: Dict[str, AgentDefinition] = Field(default_factory=dict)


class ToolRegistry:
    """Read-only lookup over a ``RegistryDocument``."""

    def __init__(self, document: RegistryDocument):
        self._doc = document
        logger.debug(
            f"ToolRegistry initialized: {len(document.tools)} tools, "
            f"{len(document.servers)} servers, {len(document.agents)} agent types"
        )

    @classmethod
    def from_yaml(cls, path: Optional[Union[str, Path]] = None) -> "ToolRegistry":
        """Load a registry from YAML, defaulting to the bundled data file."""
        registry_path = Path(path).expanduser() if path else DEFAULT_REGISTRY_PATH
        if not registry_path.exists():
            raise ConfigurationFileError(f"Tool registry file not found: {registry_path}")

        raw = ConfigurationLoader.load_yaml_file(registry_path)
        return cls.from_dict(raw, source=str(registry_path))

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], source: str = "<dict>") -> "ToolRegistry":
        # Empty YAML mappings ("serena: {}") arrive as None for nested keys
        servers = {name: cfg or {} for name, cfg in (raw.get("servers") or {}).items()}
        tools = {name: entry or {} for name, entry in (raw.get("tools") or {}).items()}
        try:
            document = RegistryDocument(**{**raw, "servers": servers, "tools": tools})
        except ValidationError as e:
            raise ConfigurationValidationError(f"Invalid tool registry {source}: {e}") from e
        return cls(document)

    # ------------------------------------------------------------------
    # Servers
    # ------------------------------------------------------------------

    @property
    def servers(self) -> List[str]:
        return list(self._doc.servers.keys())

    def is_known_server(self, server: str) -> bool:
        return server in self._doc.servers

    def get_server_configuration(self, server: str) -> ServerConfiguration:
        """Server-specific settings, or the defaults for servers without any."""
        config = self._doc.servers.get(server)
        return config.model_copy() if config is not None else ServerConfiguration()

    def resolve_server(self, tool: str) -> Optional[str]:
        """Owning server: explicit entry, else the registered name prefix before the first '_'."""
        entry = self._doc.tools.get(tool)
        if entry is not None and entry.server:
            return entry.server

        prefix = tool.split('_', 1)[0]
        if prefix in self._doc.servers:
            return prefix
        return None

    def get_alternates(self, tool: str) -> List[AlternateRoute]:
        return [route.model_copy() for route in self._doc.alternates.get(tool, [])]

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def get_tool(self, tool: str) -> ToolDescriptor:
        """Descriptor for any tool name; unknown tools get default category and resources."""
        entry = self._doc.tools.get(tool)
        if entry is None:
            return ToolDescriptor(
                name=tool,
                server=self.resolve_server(tool),
                category=self._doc.default_category,
                resources=self._doc.default_resources.model_copy(),
            )
        return ToolDescriptor(
            name=tool,
            server=self.resolve_server(tool),
            category=entry.category,
            external=entry.external,
            memory=entry.memory,
            resources=(entry.resources or self._doc.default_resources).model_copy(),
        )

    def categorize(self, tool: str) -> ToolCategory:
        return self.get_tool(tool).category

    def get_resource_profile(self, tool: str) -> ResourceUtilization:
        return self.get_tool(tool).resources

    @property
    def universal_tools(self) -> List[str]:
        return list(self._doc.universal_tools)

    @property
    def mandatory_tools(self) -> List[str]:
        return list(self._doc.mandatory_tools)

    def is_mandatory(self, tool: str) -> bool:
        return tool in self._doc.mandatory_tools

    def triggered_tools(self, task_description: str) -> List[str]:
        """Tools whose trigger term appears in the task text."""
        text = task_description.lower()
        triggered: List[str] = []
        for term, tools in self._doc.memory_triggers.items():
            if term.lower() in text:
                triggered.extend(tool for tool in tools if tool not in triggered)
        return triggered

    def is_excluded_by_context(self, tool: str, context: AgentTaskContext) -> bool:
        """Whether the context flags rule this tool out.

        Local-only tasks lose every external tool. Real-time tasks lose
        stored-memory tools, except the mandatory memory set.
        """
        descriptor = self.get_tool(tool)
        if context.local_environment_only and descriptor.external:
            return True
        if context.requires_real_time_data and descriptor.memory and not self.is_mandatory(tool):
            return True
        return False

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    @property
    def agent_types(self) -> List[str]:
        return list(self._doc.agents.keys())

    def build_patterns(self) -> Dict[str, IntegrationPattern]:
        """Baseline integration pattern per registered agent type."""
        patterns: Dict[str, IntegrationPattern] = {}
        for agent_type, definition in self._doc.agents.items():
            patterns[agent_type] = IntegrationPattern(
                agent_type=agent_type,
                universal_tools=list(self._doc.universal_tools),
                domain_tools=list(definition.domain_tools),
                selection_strategy=definition.selection_strategy,
                optimization_level=definition.optimization_level,
                workflow_pattern=definition.workflow_pattern,
            )
        return patterns


def load_tool_registry(path: Optional[Union[str, Path]] = None) -> ToolRegistry:
    return ToolRegistry.from_yaml(path)
