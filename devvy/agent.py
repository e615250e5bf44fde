"""
Agent and the Agent Loop

An Agent is a persona (AgentConfig) bound to a model gateway, the shared
conversation store and, optionally, a tool registry.

Loop (one respond_stream() call):

    AWAITING_MODEL -> TEXT_STREAMING | TOOL_CALLS_PENDING
                   -> EXECUTING_TOOLS -> AWAITING_MODEL ... -> DONE

1. Build the message list: system prompt, history, new context
2. Stream the model's reply, yielding text as it arrives
3. If the reply ends with tool calls, run them, append the results to the
   local message list and go back to 2
4. Stop on a reply without tool calls, or after max_iterations model calls
5. Commit the accumulated text to the store (the only write)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import AsyncGenerator, Optional

from .conversation import ConversationStore, Message, USER_ROLE
from .llm_client import LLMClient, LLMMessage, ToolCall, ToolCallBatch
from .tools import ToolRegistry, ToolResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10


@dataclass(frozen=True)
class AgentConfig:
    """
    A persona.

    Attributes:
        name: Display name ("The Coder")
        role: Conversation role the agent writes as
        system_prompt: System message sent on every call
        temperature: Sampling temperature (gateway default when None)
        use_tools: Offer the tool registry to the model
        prompt_template: Template for get_specialized_prompt(); "{task}" is replaced
    """
    name: str
    role: str
    system_prompt: str
    temperature: Optional[float] = None
    use_tools: bool = False
    prompt_template: str = "{task}"


class AgentLoopState(Enum):
    AWAITING_MODEL = "awaiting_model"
    TEXT_STREAMING = "text_streaming"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


class AgentDebugLogger:
    """
    Human-readable transcript of one agent's loop rounds.

    Writes <debug_dir>/<role>_debug_log.txt. Each turn appends; nothing is
    rotated.
    """

    def __init__(self, debug_dir: Path, role: str):
        self.debug_dir = Path(debug_dir)
        self.log_file = self.debug_dir / f"{role}_debug_log.txt"
        self.role = role
        self.round_num = 0
        self._prev_msg_count = 0
        self.debug_dir.mkdir(parents=True, exist_ok=True)

    def _timestamp(self) -> str:
        return datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    def _write_log(self, content: str):
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(content)

    def start_turn(self, context: Optional[str]):
        self.round_num = 0
        self._prev_msg_count = 0
        self._write_log(f"""
{'#' * 80}
#  {self.role.upper()} TURN
#  Started: {self._timestamp()}
{'#' * 80}

CONTEXT: {context or '(none)'}

""")

    def log_round_start(self, round_num: int, messages: list[LLMMessage]):
        """Log the messages added since the previous round."""
        self.round_num = round_num
        new_messages = messages[self._prev_msg_count:]
        self._prev_msg_count = len(messages)

        entry = f"""
================================================================================
ROUND {round_num} - SENDING TO LLM
Time: {self._timestamp()}
Total Messages: {len(messages)} | New This Round: {len(new_messages)}
================================================================================

"""
        for i, msg in enumerate(new_messages):
            content = msg.content or ""
            entry += f"--- Message {self._prev_msg_count - len(new_messages) + i} ({msg.role}) ---\n"
            entry += content[:3000]
            if len(content) > 3000:
                entry += f"\n... [truncated, {len(content)} total chars]"
            entry += "\n\n"
        self._write_log(entry)

    def log_response(self, text: str, tool_calls: list[ToolCall]):
        entry = f"""
================================================================================
ROUND {self.round_num} - LLM RESPONSE
Time: {self._timestamp()}
Tool calls: {[tc.name for tc in tool_calls]}
================================================================================

{text}

"""
        self._write_log(entry)

    def log_tool_result(self, call: ToolCall, result: ToolResult):
        status = "OK" if result.success else "FAILED"
        self._write_log(f"""
--------------------------------------------------------------------------------
TOOL {call.name} [{status}] (Round {self.round_num})
Arguments: {call.arguments}
--------------------------------------------------------------------------------
{result.to_message_content()[:3000]}

""")

    def end_turn(self, state: AgentLoopState, iterations: int, text: str):
        self._write_log(f"""
================================================================================
TURN END: {state.value} after {iterations} model call(s), {len(text)} chars committed
Time: {self._timestamp()}
================================================================================
""")


class Agent:
    """
    One persona's model-calling loop over the shared conversation.

    Usage:
        agent = Agent(AgentConfig("The Coder", "coder", CODER_PROMPT, 0.7, True),
                      llm, store, tools=create_default_registry())

        async for chunk in agent.respond_stream("Write a fizzbuzz"):
            print(chunk, end="")
    """

    def __init__(
        self,
        config: AgentConfig,
        llm: LLMClient,
        store: ConversationStore,
        tools: Optional[ToolRegistry] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        debug_logger: Optional[AgentDebugLogger] = None,
    ):
        self.config = config
        self.llm = llm
        self.store = store
        self.tools = tools
        self.max_iterations = max_iterations
        self.debug_logger = debug_logger
        self.last_state = AgentLoopState.DONE
        self.last_message: Optional[Message] = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def role(self) -> str:
        return self.config.role

    def get_specialized_prompt(self, task: str) -> str:
        return self.config.prompt_template.replace("{task}", task)

    def build_messages(self, user_message: Optional[str] = None) -> list[LLMMessage]:
        """System prompt, the whole conversation tagged by author role, then `user_message`."""
        messages = [LLMMessage("system", self.config.system_prompt)]

        for msg in self.store.get_messages():
            messages.append(LLMMessage(
                role="user" if msg.role == USER_ROLE else "assistant",
                content=f"[{msg.role.upper()}]: {msg.content}",
            ))

        if user_message:
            messages.append(LLMMessage("user", user_message))

        return messages

    def _tool_manifest(self) -> Optional[list[dict]]:
        if not self.config.use_tools or self.tools is None or len(self.tools) == 0:
            return None
        return self.tools.to_manifest()

    async def _execute_tool_call(self, call: ToolCall) -> ToolResult:
        try:
            args = call.parse_arguments()
        except ValueError as e:
            return ToolResult(success=False, error=f"Invalid arguments for {call.name}: {e}")

        if self.tools is None:
            return ToolResult(success=False, error=f"Unknown tool: {call.name}")

        logger.debug(f"{self.role} calling tool {call.name}")
        return await self.tools.execute(call.name, args)

    async def respond_stream(self, context: Optional[str] = None) -> AsyncGenerator[str, None]:
        """
        Run the agent loop, yielding text chunks as they arrive.

        Gateway errors propagate and nothing is committed for the turn.
        After a normal finish the persisted message is on `last_message`.
        """
        messages = self.build_messages(context)
        tools = self._tool_manifest()
        text_parts: list[str] = []
        iterations = 0
        self.last_message = None

        if self.debug_logger:
            self.debug_logger.start_turn(context)

        while True:
            if iterations >= self.max_iterations:
                logger.warning(f"{self.role}: stopping after {iterations} model calls (iteration cap)")
                break

            iterations += 1
            self.last_state = AgentLoopState.AWAITING_MODEL
            if self.debug_logger:
                self.debug_logger.log_round_start(iterations, messages)

            turn_text: list[str] = []
            batch: Optional[ToolCallBatch] = None

            async for item in self.llm.chat_stream(messages, temperature=self.config.temperature, tools=tools):
                if isinstance(item, ToolCallBatch):
                    batch = item
                    self.last_state = AgentLoopState.TOOL_CALLS_PENDING
                    continue
                self.last_state = AgentLoopState.TEXT_STREAMING
                turn_text.append(item)
                text_parts.append(item)
                yield item

            calls = batch.tool_calls if batch else []
            if self.debug_logger:
                self.debug_logger.log_response("".join(turn_text), calls)

            if not calls:
                break

            messages.append(LLMMessage("assistant", "".join(turn_text) or None, tool_calls=calls))

            self.last_state = AgentLoopState.EXECUTING_TOOLS
            for call in calls:
                result = await self._execute_tool_call(call)
                if self.debug_logger:
                    self.debug_logger.log_tool_result(call, result)
                messages.append(LLMMessage("tool", result.to_message_content(), tool_call_id=call.id))

        full_text = "".join(text_parts)
        self.last_message = self.store.add_message(self.role, full_text)
        self.last_state = AgentLoopState.DONE

        if self.debug_logger:
            self.debug_logger.end_turn(self.last_state, iterations, full_text)

    async def respond(self, context: Optional[str] = None) -> Message:
        """Run the loop to completion and return the persisted message."""
        async for _ in self.respond_stream(context):
            pass
        return self.last_message
