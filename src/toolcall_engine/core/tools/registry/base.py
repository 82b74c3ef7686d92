"""Tool registry: the static name → {schema, executor} mapping the manager executes against."""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Union

from ..models import ToolDefinition
from ..schema import build_parameters, sanitize_schema
from ...exceptions import ToolNotFoundError, ToolRegistrationError, ToolValidationError
from ...logger import get_logger

logger = get_logger(__name__)


class ToolRegistry(ABC):
    """
    Central registry of the tools a conversation may call.

    Holds the declarations sent to the model and maps each tool name to the
    executor that implements it. Names are stored exactly as the model will emit
    them, including any ``mcp-<server>_`` namespace.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self.tools: Dict[str, ToolDefinition] = {}

    def register(
        self,
        name_or_tool: Union[str, ToolDefinition, Callable],
        description: Optional[str] = None,
        func: Optional[Callable] = None,
        parameters: Optional[Any] = None,
    ) -> ToolDefinition:
        """
        Register a tool.

        Accepts a ready `ToolDefinition`, a name plus executor (and optionally an explicit
        schema), or a bare function whose signature and docstring describe the tool.

        Args:
            name_or_tool: A `ToolDefinition`, the tool name, or the executor itself.
            description: What the tool does. Required with an explicit schema.
            func: The executor, required when `name_or_tool` is a name.
            parameters: JSON-schema-like parameters. Inferred from `func` when omitted.

        Returns:
            The stored definition.

        Raises:
            ToolRegistrationError: If arguments are missing or the name is already taken.
        """
        if isinstance(name_or_tool, ToolDefinition):
            tool = name_or_tool
        elif callable(name_or_tool):
            tool = self._definition_from_callable(name_or_tool, description=description)
        else:
            if func is None:
                raise ToolRegistrationError("If passing name as string, func is required.")
            if parameters is None:
                tool = self._definition_from_callable(func, name=name_or_tool, description=description)
            else:
                if description is None:
                    raise ToolRegistrationError("If passing name and parameters, description is required.")
                tool = ToolDefinition(
                    name=name_or_tool, description=description, func=func, parameters=sanitize_schema(parameters)
                )

        if not tool.name.strip():
            raise ToolRegistrationError("Tool name must not be empty.")

        if tool.name in self.tools:
            msg = f"Tool '{tool.name}' is already registered."
            logger.error(msg)
            raise ToolRegistrationError(msg)

        self.tools[tool.name] = tool
        logger.info("Registered tool '%s'.", tool.name)
        return tool

    def unregister(self, tool_name: str) -> None:
        """Remove a tool.

        Raises:
            ToolNotFoundError: If the tool does not exist in the registry.
        """
        if tool_name not in self.tools:
            raise ToolNotFoundError(f"Tool '{tool_name}' not found in the registry.")
        del self.tools[tool_name]
        logger.info("Unregistered tool '%s'.", tool_name)

    def tool(self, func: Callable) -> Callable:
        """Decorator form of :meth:`register`; returns ``func`` unchanged."""
        self.register(func)
        return func

    def get(self, tool_name: str) -> Optional[ToolDefinition]:
        return self.tools.get(tool_name)

    def has(self, tool_name: str) -> bool:
        return tool_name in self.tools

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self.tools

    def __len__(self) -> int:
        return len(self.tools)

    @property
    def definitions(self) -> List[ToolDefinition]:
        return list(self.tools.values())

    @property
    def implementations(self) -> Dict[str, Callable]:
        """Mapping of tool name to executor."""
        return {name: tool.func for name, tool in self.tools.items()}

    @property
    @abstractmethod
    def tool_object(self) -> Any:
        """The registered tools in the shape a specific provider expects."""
        pass

    def _definition_from_callable(
        self, func: Callable, name: Optional[str] = None, description: Optional[str] = None
    ) -> ToolDefinition:
        tool_name = name or getattr(func, "__name__", "")
        if description is None:
            description = inspect.getdoc(func)
        if not description:
            msg = f"Tool '{tool_name}' missing docstring. Models need a description of what the tool does."
            logger.error(msg)
            raise ToolValidationError(msg)

        parameters, args_model = build_parameters(func, tool_name)
        return ToolDefinition(
            name=tool_name,
            description=description,
            func=func,
            parameters=parameters,
            args_model=args_model,
        )


class SimpleToolRegistry(ToolRegistry):
    """Provider-neutral registry; ``tool_object`` is the list of OpenAI-style tool entries."""

    @property
    def tool_object(self) -> List[Dict[str, Any]]:
        return [tool.to_openai() for tool in self.tools.values()]
