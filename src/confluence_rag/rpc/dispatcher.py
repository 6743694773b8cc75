"""JSON-RPC 2.0 dispatch for the MCP tool protocol.

Each message is handled end-to-end on the calling thread; the dispatcher
keeps no state between calls. This is the only place where exceptions are
turned into JSON-RPC error codes.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any

from confluence_rag.errors import ClientVisibleError, MissingArgumentError
from confluence_rag.rpc.tools import ToolRegistry

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2025-03-26"
INITIALIZED_NOTIFICATION = "notifications/initialized"


class ErrorCodes:
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INTERNAL_ERROR = -32603
    CLIENT_VISIBLE = -32001


@dataclass(frozen=True)
class ServerInfo:
    name: str
    version: str
    title: str
    instructions: str


def success_response(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(request_id: Any, code: int, message: str, data: Any = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


class ProtocolDispatcher:
    def __init__(self, tools: ToolRegistry, server_info: ServerInfo) -> None:
        self._tools = tools
        self._server_info = server_info
        self._methods = {
            "initialize": self._initialize,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
            INITIALIZED_NOTIFICATION: self._initialized,
        }

    def dispatch(self, payload: Any) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Handle one request object or a batch.

        Returns None for a lone `notifications/initialized`, which has no
        response body.
        """
        if isinstance(payload, list):
            if not payload:
                return error_response(None, ErrorCodes.INVALID_REQUEST, "Empty batch")
            return [self.handle_one(message) for message in payload]

        if isinstance(payload, dict) and payload.get("method") == INITIALIZED_NOTIFICATION:
            self._initialized({})
            return None
        return self.handle_one(payload)

    def handle_one(self, message: Any) -> dict[str, Any]:
        if not isinstance(message, dict):
            return error_response(None, ErrorCodes.INVALID_REQUEST, "Request must be an object")

        request_id = message.get("id")
        if message.get("jsonrpc") != JSONRPC_VERSION:
            return error_response(request_id, ErrorCodes.INVALID_REQUEST, "jsonrpc must be '2.0'")

        method = message.get("method")
        if not isinstance(method, str):
            return error_response(request_id, ErrorCodes.INVALID_REQUEST, "method must be a string")

        handler = self._methods.get(method)
        if handler is None:
            return error_response(request_id, ErrorCodes.METHOD_NOT_FOUND, f"Method not found: {method}")

        params = message.get("params")
        if not isinstance(params, dict):
            params = {}

        try:
            return success_response(request_id, handler(params))
        except ClientVisibleError as exc:
            logger.info("client error on %s: %s", method, exc.message)
            return error_response(request_id, ErrorCodes.CLIENT_VISIBLE, exc.message, exc.details)
        except Exception as exc:
            logger.exception("internal error on %s", method)
            return error_response(
                request_id,
                ErrorCodes.INTERNAL_ERROR,
                "Internal error",
                {"exception": type(exc).__name__, "message": str(exc)},
            )

    def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        logger.info("initialize from client=%s", params.get("client") or params.get("clientInfo"))
        return {
            "serverInfo": {
                "name": self._server_info.name,
                "version": self._server_info.version,
                "title": self._server_info.title,
            },
            "capabilities": {
                "tools": {"listChanged": True},
                "logging": {},
            },
            "protocolVersion": PROTOCOL_VERSION,
            "instructions": self._server_info.instructions,
        }

    def _initialized(self, params: dict[str, Any]) -> dict[str, Any]:
        logger.info("client initialized")
        return {}

    def _tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": self._tools.describe()}

    def _tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name.strip():
            raise MissingArgumentError("Missing tool name", {"argument": "name"})

        arguments = params.get("arguments")
        if not isinstance(arguments, dict):
            arguments = {}

        logger.info("tool call %s %s", name, json.dumps(arguments, ensure_ascii=False, default=str))
        output = self._tools.call(name, arguments)
        logger.debug("tool call %s result %s", name, output)
        return {"content": [output]}
