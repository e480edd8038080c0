import asyncio

import pytest

from ephileo.agent import Agent, AgentResult
from ephileo.exceptions import LLMAPIError, UserAbortError
from ephileo.llm import LLMProvider, LLMResponse, Message, ToolCall
from ephileo.tools.registry import DENIAL_MESSAGE, FunctionTool, PermissionGroup, ToolRegistry


class ScriptedProvider(LLMProvider):
    """Replays queued responses; an exception in the queue is raised instead."""

    def __init__(self, script):
        self.script = list(script)
        self.calls: list[dict] = []

    async def chat(self, messages, tools=None, on_token=None, abort_event=None):
        self.calls.append({"messages": list(messages), "tools": tools})
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if on_token is not None and item.content:
            on_token(item.content, False)
        return item


class LoopingProvider(LLMProvider):
    """Always asks for another tool call."""

    def __init__(self):
        self.calls = 0

    async def chat(self, messages, tools=None, on_token=None, abort_event=None):
        self.calls += 1
        return LLMResponse(tool_calls=[ToolCall(id=f"call_{self.calls}", name="echo", arguments={})])


def _registry(*tools: FunctionTool) -> ToolRegistry:
    registry = ToolRegistry()
    for tool in tools:
        registry.register(tool)
    return registry


def _fixed_tool(name: str, result: str, calls: list | None = None, group=PermissionGroup.READ) -> FunctionTool:
    async def handler(**kwargs):
        if calls is not None:
            calls.append((name, kwargs))
        return result

    return FunctionTool(name, f"{name} tool", {"type": "object", "properties": {}}, handler, group)


@pytest.mark.asyncio
async def test_end_to_end_list_files():
    provider = ScriptedProvider([
        LLMResponse(tool_calls=[ToolCall(id="call_1", name="list_directory", arguments={"path": "."})]),
        LLMResponse(content="There are two files."),
    ])
    agent = Agent(provider, _registry(_fixed_tool("list_directory", "a.txt\nb.txt")))
    messages = [Message(role="system", content="s"), Message(role="user", content="list files")]

    result = await agent.run(messages)

    assert result == AgentResult("There are two files.", 2, ("list_directory",), False)
    assert [m.role for m in messages] == ["system", "user", "assistant", "tool"]
    assert messages[2].tool_calls[0].id == "call_1"
    assert messages[2].content == ""
    assert messages[3].tool_call_id == "call_1"
    assert messages[3].content == "a.txt\nb.txt"
    # Second request sees the tool result.
    assert provider.calls[1]["messages"][-1].role == "tool"


@pytest.mark.asyncio
async def test_direct_answer_appends_nothing():
    agent = Agent(ScriptedProvider([LLMResponse(content="hi")]), _registry())
    messages = [Message(role="user", content="hello")]

    result = await agent.run(messages)

    assert result == AgentResult("hi", 1, (), False)
    assert len(messages) == 1


@pytest.mark.asyncio
async def test_empty_answer_uses_placeholder():
    agent = Agent(ScriptedProvider([LLMResponse(content=None)]), _registry())

    result = await agent.run([Message(role="user", content="hello")])

    assert result.final_text == "(no response)"


@pytest.mark.asyncio
async def test_schemas_sent_every_turn():
    provider = ScriptedProvider([LLMResponse(content="ok")])
    registry = _registry(_fixed_tool("list_directory", "x"))

    await Agent(provider, registry).run([Message(role="user", content="q")])

    assert provider.calls[0]["tools"] == registry.schemas()


@pytest.mark.asyncio
@pytest.mark.parametrize("max_turns", [1, 3, 7])
async def test_turn_bound_stops_for_safety(max_turns):
    provider = LoopingProvider()
    agent = Agent(provider, _registry(_fixed_tool("echo", "again")), max_turns=max_turns)
    messages = [Message(role="user", content="loop")]

    result = await agent.run(messages)

    assert result.final_text == "(max turns reached, stopped for safety)"
    assert result.turn_count == max_turns
    assert result.cancelled is False
    assert provider.calls == max_turns
    assert result.tools_used == ("echo",) * max_turns


@pytest.mark.asyncio
async def test_tool_results_keep_call_order():
    calls: list = []
    provider = ScriptedProvider([
        LLMResponse(
            content="working",
            tool_calls=[
                ToolCall(id="c1", name="first", arguments={"n": 1}),
                ToolCall(id="c2", name="second", arguments={"n": 2}),
                ToolCall(id="c3", name="first", arguments={"n": 3}),
            ],
        ),
        LLMResponse(content="done"),
    ])
    registry = _registry(_fixed_tool("first", "one", calls), _fixed_tool("second", "two", calls))
    messages = [Message(role="user", content="go")]

    result = await Agent(provider, registry).run(messages)

    assert result.turn_count == 2
    assert result.tools_used == ("first", "second", "first")
    assert calls == [("first", {"n": 1}), ("second", {"n": 2}), ("first", {"n": 3})]
    # One assistant message carries all three calls.
    assert [m.role for m in messages] == ["user", "assistant", "tool", "tool", "tool"]
    assert messages[1].content == "working"
    assert len(messages[1].tool_calls) == 3
    assert [(m.tool_call_id, m.content) for m in messages[2:]] == [("c1", "one"), ("c2", "two"), ("c3", "one")]


@pytest.mark.asyncio
async def test_cancel_before_second_of_three_tools():
    abort_event = asyncio.Event()
    invoked: list[str] = []

    async def first(**kwargs):
        invoked.append("first")
        abort_event.set()
        return "first done"

    async def later(**kwargs):
        invoked.append("later")
        return "should not run"

    registry = _registry(
        FunctionTool("first", "First", {}, first),
        FunctionTool("second", "Second", {}, later),
        FunctionTool("third", "Third", {}, later),
    )
    provider = ScriptedProvider([
        LLMResponse(tool_calls=[
            ToolCall(id="c1", name="first", arguments={}),
            ToolCall(id="c2", name="second", arguments={}),
            ToolCall(id="c3", name="third", arguments={}),
        ]),
    ])
    messages = [Message(role="user", content="go")]

    result = await Agent(provider, registry).run(messages, abort_event=abort_event)

    assert result.cancelled is True
    assert result.final_text == "[Cancelled]"
    assert result.tools_used == ("first",)
    assert invoked == ["first"]
    tool_messages = [m for m in messages if m.role == "tool"]
    assert [(m.tool_call_id, m.content) for m in tool_messages] == [("c1", "first done")]


@pytest.mark.asyncio
async def test_cancel_during_stream_keeps_partial_text():
    provider = ScriptedProvider([UserAbortError(partial_content="Half an ans")])
    messages = [Message(role="user", content="explain")]

    result = await Agent(provider, _registry()).run(messages)

    assert result == AgentResult("[Cancelled]\n\nHalf an ans", 1, (), True)
    assert messages[-1].role == "assistant"
    assert messages[-1].content == "Half an ans\n\n[Response interrupted by user]"


@pytest.mark.asyncio
async def test_cancel_without_partial_text_adds_no_history():
    messages = [Message(role="user", content="explain")]

    result = await Agent(ScriptedProvider([UserAbortError()]), _registry()).run(messages)

    assert result.final_text == "[Cancelled]"
    assert len(messages) == 1


@pytest.mark.asyncio
async def test_cancel_from_confirmation_aborts_turn():
    def abort(name, args):
        raise UserAbortError()

    registry = ToolRegistry(confirmation_callback=abort)
    registry.register(_fixed_tool("write_file", "written", group=PermissionGroup.WRITE))
    provider = ScriptedProvider([
        LLMResponse(tool_calls=[ToolCall(id="c1", name="write_file", arguments={"path": "x"})]),
    ])

    result = await Agent(provider, registry).run([Message(role="user", content="write")])

    assert result.cancelled is True
    assert result.tools_used == ()


@pytest.mark.asyncio
async def test_malformed_arguments_still_run_handler():
    calls: list = []
    provider = ScriptedProvider([
        # What the assembler yields for an unparseable arguments buffer.
        LLMResponse(tool_calls=[ToolCall(id="c1", name="inspect", arguments={})]),
        LLMResponse(content="ok"),
    ])

    result = await Agent(provider, _registry(_fixed_tool("inspect", "inspected", calls))).run(
        [Message(role="user", content="go")]
    )

    assert calls == [("inspect", {})]
    assert result.final_text == "ok"


@pytest.mark.asyncio
async def test_tool_errors_are_fed_back_not_raised():
    provider = ScriptedProvider([
        LLMResponse(tool_calls=[
            ToolCall(id="c1", name="missing_tool", arguments={}),
            ToolCall(id="c2", name="write_file", arguments={}),
        ]),
        LLMResponse(content="recovered"),
    ])
    registry = ToolRegistry(confirmation_callback=lambda name, args: False)
    registry.register(_fixed_tool("write_file", "written", group=PermissionGroup.WRITE))
    messages = [Message(role="user", content="go")]

    result = await Agent(provider, registry).run(messages)

    assert result.final_text == "recovered"
    assert messages[2].content == "Error: unknown tool 'missing_tool'"
    assert messages[3].content == DENIAL_MESSAGE


@pytest.mark.asyncio
async def test_transport_error_propagates():
    agent = Agent(ScriptedProvider([LLMAPIError("boom", status_code=500)]), _registry())

    with pytest.raises(LLMAPIError):
        await agent.run([Message(role="user", content="hi")])


@pytest.mark.asyncio
async def test_log_fn_receives_turns_and_tools_and_failures_are_ignored():
    lines: list[str] = []

    def log_fn(line: str) -> None:
        lines.append(line)
        raise RuntimeError("display broke")

    provider = ScriptedProvider([
        LLMResponse(tool_calls=[ToolCall(id="c1", name="list_directory", arguments={"path": "."})]),
        LLMResponse(content="done"),
    ])
    agent = Agent(provider, _registry(_fixed_tool("list_directory", "a")), log_fn=log_fn)

    result = await agent.run([Message(role="user", content="go")])

    assert result.final_text == "done"
    assert lines == ["[turn 1]", '[tool] list_directory({"path": "."})', "[turn 2]"]


@pytest.mark.asyncio
async def test_ask_creates_history_with_system_prompt():
    provider = ScriptedProvider([LLMResponse(content="hello")])

    result = await Agent(provider, _registry()).ask("hi", system_prompt="be brief")

    sent = provider.calls[0]["messages"]
    assert [(m.role, m.content) for m in sent] == [("system", "be brief"), ("user", "hi")]
    assert result.final_text == "hello"


@pytest.mark.asyncio
async def test_ask_appends_to_existing_history():
    provider = ScriptedProvider([LLMResponse(content="again")])
    history = [Message(role="system", content="s"), Message(role="user", content="first")]

    await Agent(provider, _registry()).ask("second", messages=history)

    assert [m.content for m in history] == ["s", "first", "second"]


@pytest.mark.parametrize("max_turns", [0, -3])
def test_non_positive_max_turns_rejected(max_turns):
    with pytest.raises(ValueError):
        Agent(ScriptedProvider([]), _registry(), max_turns=max_turns)


@pytest.mark.asyncio
async def test_result_does_not_share_the_tool_list():
    provider = ScriptedProvider([
        LLMResponse(tool_calls=[ToolCall(id="c1", name="echo", arguments={})]),
        LLMResponse(content="done"),
    ])

    result = await Agent(provider, _registry(_fixed_tool("echo", "again"))).run(
        [Message(role="user", content="go")]
    )

    assert isinstance(result.tools_used, tuple)
    assert result.tools_used == ("echo",)
