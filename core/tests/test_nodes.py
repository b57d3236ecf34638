"""
Tests for the node layer: registry, dispatcher, parameter templating,
trigger handlers, logic handlers and the safe expression evaluator.
"""

import pytest
from conftest import RecordingHandler, make_context, node

from febroflow.errors import FatalNodeError, UnknownNodeTypeError
from febroflow.graph.flow import NodeType
from febroflow.graph.safe_eval import UnsafeExpressionError, safe_eval
from febroflow.nodes import build_default_registry
from febroflow.nodes.base import NodeHandler, NodeHandlerRegistry, NodeResult
from febroflow.nodes.dispatcher import NodeDispatcher
from febroflow.nodes.logic import CodeHandler, IfConditionHandler, SwitchHandler
from febroflow.nodes.templating import lookup_path, render
from febroflow.nodes.triggers import (
    ScheduleTriggerHandler,
    TelegramTriggerHandler,
    WebhookTriggerHandler,
)
from febroflow.observability import get_trace_context

# === REGISTRY ===


class TestNodeHandlerRegistry:
    def test_register_and_resolve(self):
        registry = NodeHandlerRegistry()
        handler = RecordingHandler()

        registry.register("code", handler)

        assert registry.resolve(NodeType.CODE) is handler
        assert registry.is_registered("code")
        assert registry.registered_types() == [NodeType.CODE]

    def test_unknown_type_raises(self):
        registry = NodeHandlerRegistry()

        with pytest.raises(UnknownNodeTypeError):
            registry.resolve(NodeType.SWITCH)
        with pytest.raises(UnknownNodeTypeError):
            registry.resolve("not_a_type")
        assert registry.is_registered("not_a_type") is False

    def test_unregister(self):
        registry = NodeHandlerRegistry()
        registry.register(NodeType.CODE, RecordingHandler())

        assert registry.unregister(NodeType.CODE) is True
        assert registry.unregister(NodeType.CODE) is False

    def test_default_registry_wires_only_available_services(self, tmp_path):
        bare = build_default_registry()

        assert bare.is_registered(NodeType.IF_CONDITION)
        assert bare.is_registered(NodeType.HTTP_REQUEST)
        assert not bare.is_registered(NodeType.OPEN_AI)
        assert not bare.is_registered(NodeType.TELEGRAM_MESSAGE)
        assert not bare.is_registered(NodeType.DATABASE_WRITE)

        with_files = build_default_registry(file_base_dir=tmp_path)
        assert with_files.is_registered(NodeType.FILE_OPERATION)


# === DISPATCHER ===


class _NoneHandler(NodeHandler):
    async def execute(self, node, ctx):
        return None


class TestNodeDispatcher:
    @pytest.mark.asyncio
    async def test_dispatch_calls_handler(self):
        registry = NodeHandlerRegistry()
        handler = RecordingHandler()
        registry.register(NodeType.CODE, handler)
        spec = node("a")

        result = await NodeDispatcher(registry).dispatch(spec, make_context(spec, {"x": 1}))

        assert handler.calls == ["a"]
        assert result.data == {"x": 1, "trail": ["a"], "last": "a"}
        assert get_trace_context()["node_id"] == "a"

    @pytest.mark.asyncio
    async def test_unknown_type_carries_node_id(self):
        spec = node("a", type=NodeType.TEXT_TO_SPEECH)

        with pytest.raises(UnknownNodeTypeError) as exc_info:
            await NodeDispatcher(NodeHandlerRegistry()).dispatch(spec, make_context(spec))

        assert exc_info.value.node_id == "a"
        assert "text_to_speech" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_none_result_means_no_output(self):
        registry = NodeHandlerRegistry()
        registry.register(NodeType.CODE, _NoneHandler())
        spec = node("a")

        result = await NodeDispatcher(registry).dispatch(spec, make_context(spec))

        assert result == NodeResult(data=None)


# === TEMPLATING ===


class TestTemplating:
    def test_lookup_path(self):
        data = {"user": {"name": "Ada", "tags": ["x", "y"]}}

        assert lookup_path(data, "user.name") == "Ada"
        assert lookup_path(data, "user.tags.1") == "y"
        assert lookup_path(data, "user.tags.9") is None
        assert lookup_path(data, "user.age", default=0) == 0

    def test_whole_placeholder_keeps_type(self):
        data = {"payload": {"a": 1}, "n": 5}

        assert render("{{ payload }}", data) == {"a": 1}
        assert render("{{n}}", data) == 5

    def test_embedded_placeholders_render_as_text(self):
        data = {"name": "Ada", "items": [1, 2], "missing": None}

        assert render("Hi {{ name }}!", data) == "Hi Ada!"
        assert render("items={{ items }}", data) == "items=[1, 2]"
        assert render("[{{ missing }}{{ nowhere }}]", data) == "[]"

    def test_render_recurses(self):
        rendered = render({"headers": ["{{ token }}"], "n": 3}, {"token": "t"})

        assert rendered == {"headers": ["t"], "n": 3}


# === TRIGGERS ===


class TestTriggers:
    @pytest.mark.asyncio
    async def test_telegram_update_is_normalized(self):
        spec = node("t", type=NodeType.TELEGRAM_TRIGGER)
        update = {
            "message": {
                "chat": {"id": 42},
                "from": {"id": 7, "username": "ada"},
                "text": "hello",
            }
        }

        result = await TelegramTriggerHandler().execute(spec, make_context(spec, update))

        assert result.data["chat_id"] == "42"
        assert result.data["text"] == "hello"
        assert result.data["user_id"] == 7
        assert result.data["username"] == "ada"
        assert "message" in result.data

    @pytest.mark.asyncio
    async def test_telegram_chat_id_falls_back_to_context(self):
        spec = node("t", type=NodeType.TELEGRAM_TRIGGER)

        result = await TelegramTriggerHandler().execute(
            spec, make_context(spec, {"text": "hi"}, context_id="chat-9")
        )

        assert result.data["chat_id"] == "chat-9"

    @pytest.mark.asyncio
    async def test_webhook_body_is_unwrapped(self):
        spec = node("w", type=NodeType.WEBHOOK_TRIGGER)
        envelope = {"body": {"order": 1}, "headers": {"x-id": "abc"}}

        result = await WebhookTriggerHandler().execute(spec, make_context(spec, envelope))

        assert result.data == {"order": 1, "headers": {"x-id": "abc"}}

    @pytest.mark.asyncio
    async def test_webhook_without_body_passes_through(self):
        spec = node("w", type=NodeType.WEBHOOK_TRIGGER)

        result = await WebhookTriggerHandler().execute(spec, make_context(spec, {"a": 1}))

        assert result.data == {"a": 1}

    @pytest.mark.asyncio
    async def test_schedule_stamps_time(self):
        spec = node("s", type=NodeType.SCHEDULE_TRIGGER, parameters={"cron": "0 * * * *"})

        result = await ScheduleTriggerHandler().execute(spec, make_context(spec))

        assert result.data["schedule"] == "0 * * * *"
        assert "triggered_at" in result.data


# === LOGIC HANDLERS ===


class TestIfCondition:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "params,data,expected",
        [
            ({"expression": "score > 0.5"}, {"score": 0.9}, "true"),
            ({"expression": "score > 0.5"}, {"score": 0.1}, "false"),
            ({"expression": "missing > 1"}, {}, "false"),
            ({"field": "user.lang", "operator": "equals", "value": "en"},
             {"user": {"lang": "en"}}, "true"),
            ({"field": "text", "operator": "contains", "value": "help"},
             {"text": "please help"}, "true"),
            ({"field": "n", "operator": "gte", "value": "3"}, {"n": 3}, "true"),
            ({"field": "text", "operator": "is_empty"}, {"text": ""}, "true"),
            ({"field": "text", "operator": "regex", "value": "^/start"},
             {"text": "/start now"}, "true"),
        ],
    )
    async def test_labels(self, params, data, expected):
        spec = node("c", type=NodeType.IF_CONDITION, parameters=params)

        result = await IfConditionHandler().execute(spec, make_context(spec, data))

        assert result.output_label == expected
        assert result.data == data

    @pytest.mark.asyncio
    async def test_unsafe_expression_is_fatal(self):
        spec = node("c", type=NodeType.IF_CONDITION, parameters={"expression": "__import__('os')"})

        with pytest.raises(FatalNodeError):
            await IfConditionHandler().execute(spec, make_context(spec))

    @pytest.mark.asyncio
    async def test_unknown_operator_is_fatal(self):
        spec = node(
            "c", type=NodeType.IF_CONDITION, parameters={"field": "a", "operator": "sounds_like"}
        )

        with pytest.raises(FatalNodeError):
            await IfConditionHandler().execute(spec, make_context(spec, {"a": 1}))

    @pytest.mark.asyncio
    async def test_missing_condition_is_fatal(self):
        spec = node("c", type=NodeType.IF_CONDITION)

        with pytest.raises(FatalNodeError):
            await IfConditionHandler().execute(spec, make_context(spec))


class TestSwitch:
    @pytest.mark.asyncio
    async def test_first_matching_rule_wins(self):
        spec = node(
            "s",
            type=NodeType.SWITCH,
            parameters={
                "rules": [
                    {"label": "greeting", "field": "text", "operator": "starts_with",
                     "value": "hi"},
                    {"label": "anything", "expression": "True"},
                ]
            },
        )

        result = await SwitchHandler().execute(spec, make_context(spec, {"text": "hi there"}))

        assert result.output_label == "greeting"

    @pytest.mark.asyncio
    async def test_cases_table(self):
        spec = node(
            "s",
            type=NodeType.SWITCH,
            parameters={"field": "intent", "cases": {"buy": "sales"}, "default_label": "other"},
        )

        hit = await SwitchHandler().execute(spec, make_context(spec, {"intent": "buy"}))
        miss = await SwitchHandler().execute(spec, make_context(spec, {"intent": "chat"}))

        assert hit.output_label == "sales"
        assert miss.output_label == "other"

    @pytest.mark.asyncio
    async def test_misconfigured_switch_is_fatal(self):
        spec = node("s", type=NodeType.SWITCH)

        with pytest.raises(FatalNodeError):
            await SwitchHandler().execute(spec, make_context(spec))


class TestCode:
    @pytest.mark.asyncio
    async def test_assignments_see_earlier_results(self):
        spec = node(
            "c",
            parameters={"assignments": {"total": "price * qty", "big": "total > 10"}},
        )

        result = await CodeHandler().execute(spec, make_context(spec, {"price": 4, "qty": 3}))

        assert result.data == {"price": 4, "qty": 3, "total": 12, "big": True}

    @pytest.mark.asyncio
    async def test_expression_without_input(self):
        spec = node(
            "c",
            parameters={"expression": "upper(name)", "output_key": "shout", "keep_input": False},
        )

        result = await CodeHandler().execute(spec, make_context(spec, {"name": "ada"}))

        assert result.data == {"shout": "ADA"}

    @pytest.mark.asyncio
    async def test_output_label_expression(self):
        spec = node(
            "c",
            parameters={
                "assignments": {"n": "len(items)"},
                "output_label": "'many' if n > 2 else 'few'",
            },
        )

        result = await CodeHandler().execute(spec, make_context(spec, {"items": [1, 2, 3]}))

        assert result.output_label == "many"

    @pytest.mark.asyncio
    async def test_missing_assignments_is_fatal(self):
        spec = node("c")

        with pytest.raises(FatalNodeError):
            await CodeHandler().execute(spec, make_context(spec))


# === SAFE EVAL ===


class TestSafeEval:
    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("1 + 2 * 3", 7),
            ("a > 1 and b == 'x'", True),
            ("data.user.name", "Ada"),
            ("data['user']['name']", "Ada"),
            ("name.upper()", "ADA"),
            ("items[0:2]", [1, 2]),
            ("'yes' if a else 'no'", "yes"),
            ("nothing is None", True),
            ("missing > 3", False),
            ("true and not false", True),
            ("len(items) in [3, 4]", True),
            ("f'{name}!'", "ada!"),
            ("name * 2", "adaada"),
            ("3 * items", [1, 2, 3, 1, 2, 3, 1, 2, 3]),
        ],
    )
    def test_allowed(self, expression, expected):
        context = {
            "a": 2,
            "b": "x",
            "name": "ada",
            "items": [1, 2, 3],
            "data": {"user": {"name": "Ada"}},
        }

        assert safe_eval(expression, context) == expected

    @pytest.mark.parametrize(
        "expression",
        [
            "__import__('os')",
            "().__class__",
            "open('/etc/passwd')",
            "[x for x in items]",
            "lambda: 1",
            "len(items, key=1)",
            "2 ** 1000",
            "name.format(1)",
            "'a' * 10 ** 9",
            "10 ** 6 * [0]",
            "name * 200000",
        ],
    )
    def test_rejected(self, expression):
        with pytest.raises(UnsafeExpressionError):
            safe_eval(expression, {"items": [], "name": "x"})

    def test_syntax_error(self):
        with pytest.raises(SyntaxError):
            safe_eval("a >")
