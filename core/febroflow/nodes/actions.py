"""
Action node handlers: http_request, telegram_message and file_operation.

These touch the outside world, so they classify failures carefully:
transport errors, HTTP 429 and 5xx are retryable; other 4xx responses and
bad parameters are fatal.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import httpx

from febroflow.errors import FatalNodeError, RetryableNodeError
from febroflow.graph.flow import NodeSpec
from febroflow.nodes.base import NodeContext, NodeHandler, NodeResult
from febroflow.nodes.templating import lookup_path
from febroflow.services.messaging import MessageSender

logger = logging.getLogger(__name__)

_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}


def _decode_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


class HttpRequestHandler(NodeHandler):
    """
    Makes an HTTP request with the run's shared client.

    Parameters: ``url`` (required), ``method`` (GET), ``headers``, ``query``,
    ``json`` or ``body``, ``timeout``, ``response_field`` ("response") and
    ``fail_on_error`` (true). Credentials with ``headers`` are merged in; a
    credential ``token``/``api_key`` becomes a bearer Authorization header.
    """

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        url = ctx.params.get("url")
        if not url:
            raise FatalNodeError("HTTP request needs a 'url'")
        method = str(ctx.params.get("method", "GET")).upper()
        if method not in _METHODS:
            raise FatalNodeError(f"Unsupported HTTP method '{method}'")

        headers = {str(k): str(v) for k, v in (ctx.params.get("headers") or {}).items()}
        if isinstance(ctx.credentials.get("headers"), dict):
            headers.update({str(k): str(v) for k, v in ctx.credentials["headers"].items()})
        token = ctx.credentials.get("token") or ctx.credentials.get("api_key")
        if token:
            headers.setdefault(
                str(ctx.params.get("auth_header", "Authorization")), f"Bearer {token}"
            )

        request_kwargs: dict[str, Any] = {"headers": headers}
        if ctx.params.get("query"):
            request_kwargs["params"] = ctx.params["query"]
        if "json" in ctx.params:
            request_kwargs["json"] = ctx.params["json"]
        elif "body" in ctx.params:
            body = ctx.params["body"]
            if isinstance(body, dict | list):
                request_kwargs["json"] = body
            else:
                request_kwargs["content"] = str(body)
        if ctx.params.get("timeout") is not None:
            request_kwargs["timeout"] = float(ctx.params["timeout"])

        try:
            if ctx.http_client is not None:
                response = await ctx.http_client.request(method, str(url), **request_kwargs)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.request(method, str(url), **request_kwargs)
        except httpx.TransportError as e:
            raise RetryableNodeError(f"{method} {url} failed: {e}") from e

        status = response.status_code
        if ctx.params.get("fail_on_error", True):
            if status == 429 or status >= 500:
                raise RetryableNodeError(f"{method} {url} returned HTTP {status}")
            if status >= 400:
                raise FatalNodeError(f"{method} {url} returned HTTP {status}: {response.text[:200]}")

        logger.debug(f"  {method} {url} -> {status}")
        data = dict(ctx.input_data)
        data[ctx.params.get("response_field", "response")] = {
            "status_code": status,
            "headers": dict(response.headers),
            "body": _decode_body(response),
        }
        return NodeResult(data=data)


class TelegramMessageHandler(NodeHandler):
    """
    Sends a chat message through a MessageSender.

    ``chat_id`` defaults to the input's chat_id, then the execution's context
    id. ``text`` defaults to the input's ``response`` then ``text``. With
    ``await_reply`` the path suspends after sending; continue_flow() resumes
    it with the reply, which is exposed as ``reply`` without resending.
    """

    def __init__(self, sender: MessageSender):
        self.sender = sender

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        if ctx.is_resume:
            data = {**ctx.input_data, **ctx.resume_input}
            data["reply"] = ctx.resume_input.get("text", ctx.resume_input.get("reply"))
            return NodeResult(data=data)

        chat_id = ctx.params.get("chat_id") or ctx.input_data.get("chat_id") or ctx.context_id
        if not chat_id:
            raise FatalNodeError("No chat_id to send the message to")

        text = ctx.params.get("text")
        if text is None:
            text = ctx.input_data.get("response", ctx.input_data.get("text"))
        if text is None or str(text) == "":
            raise FatalNodeError("Nothing to send")

        if ctx.http_client is not None:
            sent = await self.sender.send_message(
                str(chat_id),
                str(text),
                http_client=ctx.http_client,
                credentials=ctx.credentials,
                parse_mode=ctx.params.get("parse_mode"),
            )
        else:
            async with httpx.AsyncClient() as client:
                sent = await self.sender.send_message(
                    str(chat_id),
                    str(text),
                    http_client=client,
                    credentials=ctx.credentials,
                    parse_mode=ctx.params.get("parse_mode"),
                )

        data = dict(ctx.input_data)
        data["chat_id"] = str(chat_id)
        data["sent_message"] = sent
        if ctx.params.get("await_reply"):
            logger.info(f"  ⏸ {node.id} waiting for a reply in chat {chat_id}")
            return NodeResult(data=data, suspend=True)
        return NodeResult(data=data)


class FileOperationHandler(NodeHandler):
    """
    Reads and writes files under a base directory.

    ``operation``: read, write, append, delete, exists or list. ``path`` is
    relative to the base directory and may not escape it. ``format`` "json"
    (de)serializes JSON; otherwise text. Written content comes from
    ``content`` or the input field named by ``input_field``.
    """

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)

    def _resolve(self, relative: Any) -> Path:
        if not relative:
            raise FatalNodeError("File operation needs a 'path'")
        base = self.base_dir.resolve()
        target = (base / str(relative)).resolve()
        if not target.is_relative_to(base):
            raise FatalNodeError(f"Path '{relative}' escapes the file base directory")
        return target

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        operation = str(ctx.params.get("operation", "read")).lower()
        as_json = str(ctx.params.get("format", "text")).lower() == "json"
        default_path = "." if operation == "list" else None
        path = self._resolve(ctx.params.get("path", default_path))
        data = dict(ctx.input_data)
        result_field = ctx.params.get("output_field", "file")

        if operation in ("write", "append"):
            if "content" in ctx.params:
                content = ctx.params["content"]
            else:
                content = lookup_path(ctx.input_data, str(ctx.params.get("input_field", "text")))
            if as_json:
                text = json.dumps(content, indent=2)
            else:
                text = "" if content is None else str(content)
            written = await asyncio.to_thread(self._write, path, text, operation == "append")
            data[result_field] = {"path": str(path), "bytes_written": written}
        elif operation == "read":
            if not path.exists():
                raise FatalNodeError(f"File not found: {ctx.params.get('path')}")
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
            if as_json:
                try:
                    content = json.loads(text)
                except json.JSONDecodeError as e:
                    raise FatalNodeError(f"Invalid JSON in {ctx.params.get('path')}: {e}") from e
            else:
                content = text
            data[result_field] = {"path": str(path), "content": content}
        elif operation == "delete":
            existed = path.exists()
            if existed:
                await asyncio.to_thread(path.unlink)
            data[result_field] = {"path": str(path), "deleted": existed}
        elif operation == "exists":
            data[result_field] = {"path": str(path), "exists": path.exists()}
        elif operation == "list":
            names = sorted(p.name for p in path.iterdir()) if path.is_dir() else []
            data[result_field] = {"path": str(path), "entries": names}
        else:
            raise FatalNodeError(f"Unknown file operation '{operation}'")

        return NodeResult(data=data)

    @staticmethod
    def _write(path: Path, text: str, append: bool) -> int:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a" if append else "w", encoding="utf-8") as f:
            return f.write(text)
