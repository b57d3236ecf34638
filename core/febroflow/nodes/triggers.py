"""Trigger node handlers. The entry point of a flow; they shape the input event."""

from datetime import UTC, datetime

from febroflow.graph.flow import NodeSpec
from febroflow.nodes.base import NodeContext, NodeHandler, NodeResult


class TelegramTriggerHandler(NodeHandler):
    """
    Normalizes a Telegram update.

    Accepts either a raw Bot API update (``{"message": {...}}``) or data that
    already carries ``chat_id``/``text``, and exposes ``chat_id``, ``text``,
    ``user_id`` and ``username`` at the top level. The original payload is
    kept alongside.
    """

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        data = dict(ctx.input_data)
        message = data.get("message") or data.get("edited_message")
        if isinstance(message, dict):
            chat = message.get("chat") or {}
            sender = message.get("from") or {}
            data.setdefault("chat_id", chat.get("id"))
            data.setdefault("text", message.get("text") or message.get("caption") or "")
            data.setdefault("user_id", sender.get("id"))
            data.setdefault("username", sender.get("username"))

        if data.get("chat_id") is not None:
            data["chat_id"] = str(data["chat_id"])
        elif ctx.context_id:
            data["chat_id"] = ctx.context_id
        data.setdefault("text", "")
        return NodeResult(data=data)


class WebhookTriggerHandler(NodeHandler):
    """Unwraps a webhook envelope: the JSON ``body`` becomes the data."""

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        data = dict(ctx.input_data)
        body = data.pop("body", None)
        if isinstance(body, dict):
            merged = {**body}
            for key in ("headers", "query"):
                if key in data:
                    merged.setdefault(key, data[key])
            return NodeResult(data=merged)
        if body is not None:
            data["body"] = body
        return NodeResult(data=data)


class ScheduleTriggerHandler(NodeHandler):
    """Stamps the trigger time (and the configured schedule, if any)."""

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        data = dict(ctx.input_data)
        data.setdefault("triggered_at", datetime.now(UTC).isoformat())
        schedule = ctx.params.get("cron") or ctx.params.get("schedule")
        if schedule:
            data.setdefault("schedule", schedule)
        return NodeResult(data=data)
