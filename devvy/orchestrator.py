"""
Orchestrator

Routes work between agents over the shared conversation:
- run_agent(): one agent turn, plus an automatic question hand-off
- run_review_cycle(): Critic review, then End User + Coder revision
- run_review_loop(): review cycles until approval or the cycle cap
- brainstorm(): Architect -> Coder -> Critic -> End User

Everything is sequential. Events are yielded as they happen so a caller
can render streaming output.
"""

import logging
from dataclasses import dataclass, field
from typing import AsyncGenerator, Callable, Optional

from .agent import Agent
from .config import ALL_AGENT_ROLES, DevvyConfig
from .conversation import ConversationStore, Message, USER_ROLE
from .errors import ValidationError
from .llm_client import LLMClient
from .personas import create_agents
from .providers import create_llm_client
from .question_detector import detect_questions
from .tools import ToolRegistry, create_default_registry

logger = logging.getLogger(__name__)

REVIEW_PROMPT = "Please review the latest code."
REVISE_PROMPT = "Please address the feedback from the Critic and update the code."
BRAINSTORM_ORDER = ("architect", "coder", "critic", "enduser")

# Roles that answer questions; their own output never triggers a hand-off
ANSWERING_ROLES = ("questioner", "asker")

REJECTION_MARKERS = ("needs changes", "needs discussion")


def is_approved(text: str) -> bool:
    """
    Approval heuristic for a Critic review.

    Approved when the text mentions "approved" and neither rejection
    marker. "not yet approved" counts as approved; this is a known
    weakness of the heuristic.
    """
    lowered = text.lower()
    return "approved" in lowered and not any(marker in lowered for marker in REJECTION_MARKERS)


@dataclass
class OrchestratorConfig:
    max_review_cycles: int = 3
    enabled_agents: list[str] = field(default_factory=lambda: list(ALL_AGENT_ROLES))
    auto_answer_questions: bool = True


@dataclass
class AgentEvent:
    """
    Emitted by run_agent().

    type is one of:
    - "chunk": streamed text from the agent
    - "handoff_chunk": streamed text from the answering agent (`role` says which)
    - "handoff_complete": the answering agent finished; `message` is its reply
    - "complete": always last; full text and persisted message of the agent
    """
    type: str
    content: str
    role: str
    message: Optional[Message] = None


@dataclass
class PhaseEvent:
    """Emitted by the review and brainstorm protocols."""
    agent: str
    phase: str  # "start", "chunk" or "complete"
    content: Optional[str] = None
    approved: Optional[bool] = None


class Orchestrator:
    """
    Coordinates the agents.

    Usage:
        orchestrator = Orchestrator.from_config(get_config())

        orchestrator.add_user_message("Write a CSV parser")
        async for event in orchestrator.run_agent("coder"):
            if event.type == "chunk":
                print(event.content, end="")

        async for event in orchestrator.run_review_loop():
            ...
    """

    def __init__(
        self,
        agents: dict[str, Agent],
        store: ConversationStore,
        config: Optional[OrchestratorConfig] = None,
        approval_check: Callable[[str], bool] = is_approved,
        llm: Optional[LLMClient] = None,
        tools: Optional[ToolRegistry] = None,
    ):
        self.agents = agents
        self.store = store
        self.config = config or OrchestratorConfig()
        self.approval_check = approval_check
        self.llm = llm
        self.tools = tools

    @classmethod
    def from_config(
        cls,
        config: DevvyConfig,
        llm: Optional[LLMClient] = None,
        store: Optional[ConversationStore] = None,
        tools: Optional[ToolRegistry] = None,
    ) -> 'Orchestrator':
        """Composition root: build gateway, store, tools and agents from settings."""
        llm = llm or create_llm_client(config)
        store = store or ConversationStore()
        tools = tools or create_default_registry(config.shell_timeout)
        agents = create_agents(llm, store, tools, config)

        return cls(
            agents,
            store,
            OrchestratorConfig(
                max_review_cycles=config.max_review_cycles,
                enabled_agents=list(config.enabled_agents),
                auto_answer_questions=config.auto_answer_questions,
            ),
            llm=llm,
            tools=tools,
        )

    def get_agent(self, role: str) -> Agent:
        agent = self.agents.get(role)
        if agent is None:
            raise ValidationError(f"Unknown agent type: {role}", {"role": role})
        return agent

    def is_agent_enabled(self, role: str) -> bool:
        return role in self.config.enabled_agents and role in self.agents

    def add_user_message(self, content: str) -> Message:
        return self.store.add_message(USER_ROLE, content)

    def _handoff_role(self) -> Optional[str]:
        for role in ANSWERING_ROLES:
            if self.is_agent_enabled(role):
                return role
        return None

    async def run_agent(
        self,
        role: str,
        context: Optional[str] = None,
    ) -> AsyncGenerator[AgentEvent, None]:
        """
        Run one agent turn and re-emit its output.

        If the reply contains questions, the answering agent runs right
        after it (one level deep) and its output is emitted as handoff_*
        events. The final event is always "complete" for `role`.

        Raises:
            ValidationError: role unknown or not enabled
        """
        if not self.is_agent_enabled(role):
            raise ValidationError(f"Agent {role} is not enabled", {"role": role})

        agent = self.get_agent(role)
        parts = []

        async for chunk in agent.respond_stream(context):
            parts.append(chunk)
            yield AgentEvent(type="chunk", content=chunk, role=role)

        full_text = "".join(parts)
        message = agent.last_message

        if self.config.auto_answer_questions and role not in ANSWERING_ROLES:
            questions = detect_questions(full_text)
            handoff_role = self._handoff_role()
            if questions and handoff_role:
                logger.info(f"{role} asked {len(questions)} question(s); handing off to {handoff_role}")
                answerer = self.get_agent(handoff_role)
                answer_parts = []
                async for chunk in answerer.respond_stream(answerer.get_specialized_prompt("\n".join(questions))):
                    answer_parts.append(chunk)
                    yield AgentEvent(type="handoff_chunk", content=chunk, role=handoff_role)
                yield AgentEvent(
                    type="handoff_complete",
                    content="".join(answer_parts),
                    role=handoff_role,
                    message=answerer.last_message,
                )

        yield AgentEvent(type="complete", content=full_text, role=role, message=message)

    async def _run_phase(self, role: str, context: Optional[str]) -> AsyncGenerator[PhaseEvent, None]:
        """run_agent() translated into start/chunk/complete phase events."""
        yield PhaseEvent(agent=role, phase="start")
        handoff_started = False

        async for event in self.run_agent(role, context):
            if event.type == "chunk":
                yield PhaseEvent(agent=role, phase="chunk", content=event.content)
            elif event.type in ("handoff_chunk", "handoff_complete"):
                if not handoff_started:
                    handoff_started = True
                    yield PhaseEvent(agent=event.role, phase="start")
                phase = "chunk" if event.type == "handoff_chunk" else "complete"
                yield PhaseEvent(agent=event.role, phase=phase, content=event.content)
            else:
                yield PhaseEvent(agent=role, phase="complete", content=event.content)

    async def run_review_cycle(self) -> AsyncGenerator[PhaseEvent, None]:
        """
        One review cycle.

        The Critic reviews; if it does not approve and cycles remain, the
        End User and then the Coder respond. Past max_review_cycles a
        forced approval is reported instead of running anything.
        """
        cycle = self.store.increment_review_cycle()
        max_cycles = self.config.max_review_cycles

        if cycle > max_cycles:
            logger.info(f"Review cycle cap ({max_cycles}) reached, forcing approval")
            yield PhaseEvent(
                agent="critic",
                phase="complete",
                content=f"Maximum review cycles ({max_cycles}) reached. Please review the results.",
                approved=True,
            )
            return

        review = ""
        async for event in self._run_phase("critic", REVIEW_PROMPT):
            if event.agent == "critic" and event.phase == "complete":
                review = event.content or ""
                continue
            yield event

        approved = self.approval_check(review)
        logger.info(f"Review cycle {cycle}/{max_cycles}: {'approved' if approved else 'changes requested'}")
        yield PhaseEvent(agent="critic", phase="complete", content=review, approved=approved)

        if approved or cycle >= max_cycles:
            return

        if self.is_agent_enabled("enduser"):
            async for event in self._run_phase("enduser", None):
                yield event

        if self.is_agent_enabled("coder"):
            async for event in self._run_phase("coder", REVISE_PROMPT):
                yield event

    async def run_review_loop(self) -> AsyncGenerator[PhaseEvent, None]:
        """Run review cycles until the Critic approves or approval is forced."""
        while True:
            done = False
            async for event in self.run_review_cycle():
                if event.agent == "critic" and event.phase == "complete" and event.approved:
                    done = True
                yield event
            if done:
                return

    async def brainstorm(self, topic: str) -> AsyncGenerator[PhaseEvent, None]:
        """Each enabled brainstorm role speaks once, in order, seeing the others."""
        for role in BRAINSTORM_ORDER:
            if not self.is_agent_enabled(role):
                continue

            if role == "architect":
                prompt = f"Let's brainstorm about: {topic}\n\nProvide your architectural perspective."
            else:
                prompt = f"Continue the brainstorm about: {topic}\n\nAdd your perspective considering what others have said."

            async for event in self._run_phase(role, prompt):
                yield event

    def get_conversation_summary(self) -> str:
        return self.store.get_context_summary()

    def clear_conversation(self):
        self.store.clear()

    async def close(self):
        if self.llm is not None:
            await self.llm.close()
