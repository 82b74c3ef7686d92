"""Bridge MCP server tools into ToolRegistry entries through async stdio client sessions."""

from contextlib import AsyncExitStack
from types import TracebackType
from typing import Any, List, Optional, Type, cast

from mcp import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.types import EmbeddedResource, ImageContent, TextContent
from mcp.types import Tool as MCPTool

from ..core.exceptions import LLMToolError, ToolExecutionError
from ..core.logger import get_logger
from ..core.tools.registry import ToolRegistry

logger = get_logger(__name__)

__all__ = ["MCPClientWrapper", "MCP_PREFIX", "namespaced_tool_name"]

MCP_PREFIX = "mcp-"


def _server_id(server_name: str) -> str:
    # "_" separates server from tool, so it cannot appear inside the server id
    slug = server_name.strip().lower().replace("_", "-").replace(" ", "-")
    return slug if slug.startswith(MCP_PREFIX) else f"{MCP_PREFIX}{slug}"


def _block_text(block: Any) -> str:
    """Text rendition of one MCP content block; non-text blocks become short placeholders."""
    if block.type == "text":
        return cast(TextContent, block).text
    if block.type == "image":
        return f"[Image: {cast(ImageContent, block).mimeType}]"
    if block.type == "resource":
        return f"[Resource: {cast(EmbeddedResource, block).resource.uri}]"
    return f"[Unknown content type: {block.type}]"


def namespaced_tool_name(server_name: str, tool_name: str) -> str:
    """Name under which a server's tool is registered, e.g. ``mcp-filesystem_write``."""
    return f"{_server_id(server_name)}_{tool_name}"


class MCPClientWrapper:
    """Wrapper for the Model Context Protocol (MCP) client to integrate with ToolRegistry.

    Tools are registered as ``mcp-<server>_<tool>`` so the approval policy can tell
    which server a call goes to and classify the bare tool name.
    """

    def __init__(self, server_name: str, command: str, args: list[str], env: Optional[dict[str, str]] = None):
        """Initializes the wrapper with parameters for the MCP server process.

        Args:
            server_name: Short server identifier used in the namespaced tool names.
            command: The command to run the server.
            args: List of arguments for the command.
            env: Optional dictionary of environment variables.
        """
        self.server_id = _server_id(server_name)
        self._server_params = StdioServerParameters(command=command, args=args, env=env)
        self._session: Optional[ClientSession] = None
        self._exit_stack = AsyncExitStack()

    async def __aenter__(self) -> "MCPClientWrapper":
        """Opens the connection (transport) and initializes the session."""
        logger.debug("Initializing MCP client session for '%s'...", self.server_id)
        read, write = await self._exit_stack.enter_async_context(stdio_client(self._server_params))

        self._session = await self._exit_stack.enter_async_context(ClientSession(read, write))

        await self._session.initialize()
        logger.info("MCP client session '%s' initialized.", self.server_id)
        return self

    async def __aexit__(
        self, exc_type: Optional[Type[BaseException]], exc_val: Optional[BaseException], exc_tb: Optional[TracebackType]
    ) -> None:
        """Cleanly closes all connections."""
        logger.debug("Closing MCP client session '%s'...", self.server_id)
        await self._exit_stack.aclose()
        self._session = None
        logger.info("MCP client session '%s' closed.", self.server_id)

    async def load_into(self, registry: ToolRegistry) -> List[str]:
        """Loads all tools from the MCP server and registers them in the given registry.

        Args:
            registry: The ToolRegistry to register the tools into.

        Returns:
            The namespaced names that were registered.

        Raises:
            RuntimeError: If the MCP Client is not connected.
        """
        if not self._session:
            raise RuntimeError("MCP Client is not connected. Use 'async with'.")

        logger.debug("Fetching tools from MCP server '%s'...", self.server_id)
        result = await self._session.list_tools()
        logger.info("Found %d tools on MCP server '%s'.", len(result.tools), self.server_id)

        registered = []
        for tool in result.tools:
            name = self._register_single_tool(registry, tool)
            if name:
                registered.append(name)
        return registered

    def _register_single_tool(self, registry: ToolRegistry, tool: MCPTool) -> Optional[str]:
        remote_name = tool.name
        full_name = f"{self.server_id}_{remote_name}"
        tool_description = tool.description or f"Tool {remote_name} provided by MCP server {self.server_id}."

        async def mcp_proxy(**kwargs: Any) -> Any:
            """Forward the call to the remote MCP tool and flatten its content blocks to text."""
            if not self._session:
                raise ToolExecutionError(f"Cannot call tool '{full_name}': MCP session is not active.")

            logger.info("Delegating tool '%s' to MCP server '%s'...", remote_name, self.server_id)
            logger.debug("Tool arguments: %s", kwargs)

            mcp_result = await self._session.call_tool(remote_name, arguments=kwargs)

            blocks = list(mcp_result.content or [])
            result_text = "\n".join(_block_text(block) for block in blocks)
            if mcp_result.isError:
                raise ToolExecutionError(
                    result_text or f"MCP tool '{remote_name}' reported an error.", code="MCP_TOOL_ERROR"
                )
            if not blocks:
                return "Success"

            logger.debug(
                "Tool '%s' result: %s", full_name, result_text[:200] + "..." if len(result_text) > 200 else result_text
            )
            return result_text

        mcp_proxy.__name__ = full_name
        mcp_proxy.__doc__ = tool_description

        try:
            registry.register(
                name_or_tool=full_name, description=tool_description, func=mcp_proxy, parameters=tool.inputSchema
            )
        except LLMToolError as e:
            logger.error("Error registering MCP Tool '%s': %s", full_name, e)
            return None
        logger.info("MCP Tool '%s' successfully registered.", full_name)
        return full_name
