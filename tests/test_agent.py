"""Tests for the agent loop."""

import json

import pytest

from devvy.agent import Agent, AgentConfig, AgentDebugLogger, AgentLoopState
from devvy.errors import APIError
from devvy.llm_client import ChatResponse, ScriptedLLMClient, ToolCall
from devvy.tools import SignalImplementationModeTool, ToolRegistry, create_default_registry

CODER = AgentConfig(
    name="The Coder",
    role="coder",
    system_prompt="You write code.",
    temperature=0.7,
    use_tools=True,
    prompt_template="Implement: {task}",
)


def make_agent(llm, store, tools=None, config=CODER, **kwargs) -> Agent:
    return Agent(config, llm, store, tools=tools, **kwargs)


async def drain(agent: Agent, context=None) -> list[str]:
    return [chunk async for chunk in agent.respond_stream(context)]


class TestBuildMessages:
    """Prompt assembly."""

    def test_history_is_role_tagged(self, store):
        store.add_message("user", "Write a parser")
        store.add_message("critic", "Looks fine")
        agent = make_agent(ScriptedLLMClient(), store)

        messages = agent.build_messages("Go on")

        assert [m.role for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[0].content == "You write code."
        assert messages[1].content == "[USER]: Write a parser"
        assert messages[2].content == "[CRITIC]: Looks fine"
        assert messages[3].content == "Go on"

    def test_no_context(self, store):
        agent = make_agent(ScriptedLLMClient(), store)
        assert len(agent.build_messages()) == 1

    def test_specialized_prompt(self, store):
        agent = make_agent(ScriptedLLMClient(), store)
        assert agent.get_specialized_prompt("a CSV parser") == "Implement: a CSV parser"


class TestAgentLoop:
    """respond_stream()"""

    @pytest.mark.asyncio
    async def test_plain_text_turn(self, store, no_sleep):
        """Chunks are yielded and the joined text is committed once."""
        llm = ScriptedLLMClient(["Hello world"], chunk_size=4, sleep=no_sleep)
        agent = make_agent(llm, store)

        chunks = await drain(agent, "Say hi")

        assert chunks == ["Hell", "o wo", "rld"]
        assert [(m.role, m.content) for m in store.get_messages()] == [("coder", "Hello world")]
        assert agent.last_message.content == "Hello world"
        assert agent.last_state == AgentLoopState.DONE
        assert llm.calls[0]["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_tool_round_trip(self, store, tmp_path, no_sleep):
        """A tool call is executed and its result fed back before the next model call."""
        target = tmp_path / "out.py"
        call = ToolCall("call_1", "write_file", json.dumps({"path": str(target), "content": "x = 1\n"}))
        llm = ScriptedLLMClient(
            [ChatResponse(content="Writing. ", tool_calls=[call]), "Done."],
            sleep=no_sleep,
        )
        agent = make_agent(llm, store, tools=create_default_registry())

        message = await agent.respond("Create out.py")

        assert target.read_text() == "x = 1\n"
        assert message.content == "Writing. Done."
        assert len(store) == 1

        second_request = llm.calls[1]["messages"]
        assistant, tool = second_request[-2], second_request[-1]
        assert assistant.role == "assistant"
        assert assistant.tool_calls == [call]
        assert tool.role == "tool"
        assert tool.tool_call_id == "call_1"
        assert tool.content == f"File written successfully: {target}"

    @pytest.mark.asyncio
    async def test_tool_manifest_offered(self, store, no_sleep):
        llm = ScriptedLLMClient(["ok"], sleep=no_sleep)
        agent = make_agent(llm, store, tools=create_default_registry())
        await agent.respond()

        names = [t["function"]["name"] for t in llm.calls[0]["tools"]]
        assert "bash" in names

    @pytest.mark.asyncio
    async def test_tools_withheld_without_use_tools(self, store, no_sleep):
        config = AgentConfig(name="The Architect", role="architect", system_prompt="Design.")
        llm = ScriptedLLMClient(["A plan"], sleep=no_sleep)
        agent = make_agent(llm, store, tools=create_default_registry(), config=config)

        await agent.respond()

        assert llm.calls[0]["tools"] is None
        assert llm.calls[0]["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_malformed_arguments_reported_to_model(self, store, no_sleep):
        call = ToolCall("call_1", "read_file", "{not json")
        llm = ScriptedLLMClient([ChatResponse(content="", tool_calls=[call]), "Sorry."], sleep=no_sleep)
        agent = make_agent(llm, store, tools=create_default_registry())

        await agent.respond()

        tool_message = llm.calls[1]["messages"][-1]
        assert tool_message.content.startswith("Error: Invalid arguments for read_file")

    @pytest.mark.asyncio
    async def test_unknown_tool_reported_to_model(self, store, no_sleep):
        call = ToolCall("call_1", "launch_rocket", "{}")
        llm = ScriptedLLMClient([ChatResponse(content="", tool_calls=[call]), "Oops."], sleep=no_sleep)
        agent = make_agent(llm, store, tools=ToolRegistry())

        await agent.respond()

        assert llm.calls[1]["messages"][-1].content == "Error: Unknown tool: launch_rocket"

    @pytest.mark.asyncio
    async def test_iteration_cap(self, store, no_sleep):
        """A model that always asks for tools is stopped and its text still committed."""
        def always_tools(messages):
            return ChatResponse(
                content="step ",
                tool_calls=[ToolCall("c", "signal_implementation_mode", "{}")],
            )

        llm = ScriptedLLMClient(responder=always_tools, sleep=no_sleep)
        agent = make_agent(llm, store, tools=ToolRegistry([SignalImplementationModeTool()]), max_iterations=3)

        message = await agent.respond("loop")

        assert len(llm.calls) == 3
        assert message.content == "step step step "
        assert agent.last_state == AgentLoopState.DONE

    @pytest.mark.asyncio
    async def test_iteration_cap_with_no_text(self, store, no_sleep):
        def silent_tools(messages):
            return ChatResponse(content="", tool_calls=[ToolCall("c", "signal_implementation_mode", "{}")])

        llm = ScriptedLLMClient(responder=silent_tools, sleep=no_sleep)
        agent = make_agent(llm, store, tools=ToolRegistry([SignalImplementationModeTool()]), max_iterations=2)

        message = await agent.respond()

        assert message.content == ""
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_gateway_error_commits_nothing(self, store, no_sleep):
        llm = ScriptedLLMClient([ValueError("invalid request body")], sleep=no_sleep)
        agent = make_agent(llm, store)

        with pytest.raises(APIError):
            await agent.respond("hi")

        assert len(store) == 0
        assert agent.last_message is None


class TestAgentDebugLogger:
    """Per-role transcript files."""

    @pytest.mark.asyncio
    async def test_transcript_written(self, store, tmp_path, no_sleep):
        call = ToolCall("c1", "signal_implementation_mode", "{}")
        llm = ScriptedLLMClient([ChatResponse(content="Thinking", tool_calls=[call]), "Done"], sleep=no_sleep)
        debug = AgentDebugLogger(tmp_path / "debug", "coder")
        agent = make_agent(
            llm, store, tools=ToolRegistry([SignalImplementationModeTool()]), debug_logger=debug,
        )

        await agent.respond("Start")

        log = (tmp_path / "debug" / "coder_debug_log.txt").read_text()
        assert "CODER TURN" in log
        assert "CONTEXT: Start" in log
        assert "ROUND 2 - SENDING TO LLM" in log
        assert "TOOL signal_implementation_mode [OK]" in log
        assert "TURN END: done after 2 model call(s)" in log
