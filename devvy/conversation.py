"""
Conversation Store

The single shared, append-only message log that every agent reads from
and writes to. Also keeps:
- Code blocks extracted from fenced ```lang blocks in messages
- The current task label
- The review-cycle counter used by the review protocol
"""

import re
import random
import string
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional


USER_ROLE = "user"

# Roles an agent can author messages as
AGENT_ROLES = ("coder", "critic", "debugger", "architect", "enduser", "questioner", "asker")

CODE_BLOCK_PATTERN = re.compile(r'```(\w+)?\n([\s\S]*?)```')


def generate_id() -> str:
    """Millisecond timestamp plus a short random suffix."""
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"{int(time.time() * 1000)}-{suffix}"


@dataclass(frozen=True)
class Message:
    """A single message in the shared conversation."""
    id: str
    role: str  # one of AGENT_ROLES or "user"
    content: str
    timestamp: datetime
    reply_to: Optional[str] = None


@dataclass(frozen=True)
class CodeBlock:
    """A fenced code block extracted from a message."""
    id: str
    language: str
    code: str
    timestamp: datetime
    author_role: str
    filename: Optional[str] = None


@dataclass
class ConversationContext:
    """Everything the store owns."""
    messages: list[Message] = field(default_factory=list)
    code_blocks: list[CodeBlock] = field(default_factory=list)
    current_task: Optional[str] = None
    review_cycle: int = 0


def extract_code_blocks(message: Message) -> list[CodeBlock]:
    """Extract every fenced code block from a message, in order."""
    blocks = []
    for match in CODE_BLOCK_PATTERN.finditer(message.content):
        blocks.append(CodeBlock(
            id=generate_id(),
            language=match.group(1) or "text",
            code=match.group(2).strip(),
            timestamp=datetime.now(timezone.utc),
            author_role=message.role,
        ))
    return blocks


class ConversationStore:
    """
    Append-only ordered log of role-tagged messages.

    Usage:
        store = ConversationStore()
        store.add_message("user", "Write a fizzbuzz in python")
        store.add_message("coder", "```python\\nprint(1)\\n```")

        store.get_latest_code_block().language  # "python"
    """

    def __init__(self):
        self._context = ConversationContext()

    def add_message(self, role: str, content: str, reply_to: Optional[str] = None) -> Message:
        """Append a message and record any code blocks it contains."""
        message = Message(
            id=generate_id(),
            role=role,
            content=content,
            timestamp=datetime.now(timezone.utc),
            reply_to=reply_to,
        )
        self._context.messages.append(message)
        self._context.code_blocks.extend(extract_code_blocks(message))
        return message

    def get_messages(self) -> list[Message]:
        return list(self._context.messages)

    def get_last_n(self, n: int) -> list[Message]:
        if n <= 0:
            return []
        return self._context.messages[-n:]

    def get_by_role(self, role: str) -> list[Message]:
        return [m for m in self._context.messages if m.role == role]

    def get_code_blocks(self) -> list[CodeBlock]:
        return list(self._context.code_blocks)

    def get_latest_code_block(self) -> Optional[CodeBlock]:
        if not self._context.code_blocks:
            return None
        return self._context.code_blocks[-1]

    def set_current_task(self, task: str):
        self._context.current_task = task

    def get_current_task(self) -> Optional[str]:
        return self._context.current_task

    def increment_review_cycle(self) -> int:
        self._context.review_cycle += 1
        return self._context.review_cycle

    def get_review_cycle(self) -> int:
        return self._context.review_cycle

    def get_context_summary(self) -> str:
        """Short multi-line summary for status displays."""
        summary = [
            f"Current Task: {self._context.current_task or 'None'}",
            f"Review Cycle: {self._context.review_cycle}",
            f"Total Messages: {len(self._context.messages)}",
            f"Code Blocks: {len(self._context.code_blocks)}",
        ]
        return "\n".join(summary)

    def get_full_context(self) -> ConversationContext:
        """Shallow copy of the whole context."""
        return replace(
            self._context,
            messages=list(self._context.messages),
            code_blocks=list(self._context.code_blocks),
        )

    def format_for_llm(self, max_messages: Optional[int] = None) -> str:
        """Render the history as `[ROLE]: content` paragraphs."""
        messages = self.get_last_n(max_messages) if max_messages else self._context.messages
        return "\n\n".join(f"[{m.role.upper()}]: {m.content}" for m in messages)

    def clear(self):
        """Reset to an empty conversation."""
        self._context = ConversationContext()

    def __len__(self) -> int:
        return len(self._context.messages)
