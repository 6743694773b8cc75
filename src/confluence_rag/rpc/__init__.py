from confluence_rag.rpc.dispatcher import ProtocolDispatcher, ServerInfo
from confluence_rag.rpc.tools import Tool, ToolRegistry, build_tool_registry

__all__ = ["ProtocolDispatcher", "ServerInfo", "Tool", "ToolRegistry", "build_tool_registry"]
