from .wrapper import MCP_PREFIX, MCPClientWrapper, namespaced_tool_name

__all__ = ["MCPClientWrapper", "MCP_PREFIX", "namespaced_tool_name"]
