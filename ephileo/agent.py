"""Agent turn loop: model call, tool execution, repeat."""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Callable

from ephileo.exceptions import UserAbortError
from ephileo.llm import LLMProvider, Message, OnTokenCallback
from ephileo.logging import get_logger
from ephileo.tools import ToolRegistry

log = get_logger(__name__)

DEFAULT_MAX_TURNS = 20
NO_RESPONSE_TEXT = "(no response)"
MAX_TURNS_TEXT = "(max turns reached, stopped for safety)"
CANCELLED_TEXT = "[Cancelled]"
INTERRUPTED_NOTE = "[Response interrupted by user]"
TOOL_ARGS_PREVIEW_CHARS = 80

LogCallback = Callable[[str], None]


@dataclass(frozen=True)
class AgentResult:
    """Outcome of one ``run``."""

    final_text: str
    turn_count: int
    tools_used: tuple[str, ...] = ()
    cancelled: bool = False


class Agent:
    """Drives one conversation through bounded model/tool turns.

    The caller owns the message list; ``run`` only ever appends to it.
    """

    def __init__(
        self,
        provider: LLMProvider,
        tools: ToolRegistry,
        max_turns: int = DEFAULT_MAX_TURNS,
        log_fn: LogCallback | None = None,
    ):
        self.provider = provider
        self.tools = tools
        if max_turns < 1:
            raise ValueError(f"max_turns must be at least 1, got {max_turns}")
        self.max_turns = max_turns
        self.log_fn = log_fn

    def _emit(self, text: str) -> None:
        if self.log_fn is None:
            return
        try:
            self.log_fn(text)
        except Exception as e:
            log.warning("Log callback failed", error=str(e))

    @staticmethod
    def _preview_args(arguments: dict[str, Any]) -> str:
        try:
            text = json.dumps(arguments, ensure_ascii=False)
        except (TypeError, ValueError):
            text = str(arguments)
        return text[:TOOL_ARGS_PREVIEW_CHARS]

    @staticmethod
    def _cancelled(
        messages: list[Message],
        partial: str,
        turn_count: int,
        tools_used: list[str],
    ) -> AgentResult:
        if partial:
            messages.append(Message(role="assistant", content=f"{partial}\n\n{INTERRUPTED_NOTE}"))
            final_text = f"{CANCELLED_TEXT}\n\n{partial}"
        else:
            final_text = CANCELLED_TEXT
        log.info("Agent run cancelled", turns=turn_count, partial_chars=len(partial))
        return AgentResult(final_text, turn_count, tuple(tools_used), cancelled=True)

    async def run(
        self,
        messages: list[Message],
        on_token: OnTokenCallback | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> AgentResult:
        """Run turns until the model answers, the turn budget runs out, or
        the user cancels.

        Transport errors (``LLMError``) propagate to the caller. Tool
        failures come back as tool-result text and never stop the loop.
        """
        turn_count = 0
        tools_used: list[str] = []

        while turn_count < self.max_turns:
            turn_count += 1
            self._emit(f"[turn {turn_count}]")

            try:
                response = await self.provider.chat(
                    messages,
                    tools=self.tools.schemas(),
                    on_token=on_token,
                    abort_event=abort_event,
                )
            except UserAbortError as e:
                return self._cancelled(messages, e.partial_content, turn_count, tools_used)

            if not response.tool_calls:
                log.debug("Agent run finished", turns=turn_count, tools=len(tools_used))
                return AgentResult(response.content or NO_RESPONSE_TEXT, turn_count, tuple(tools_used))

            messages.append(
                Message(
                    role="assistant",
                    content=response.content or "",
                    tool_calls=list(response.tool_calls),
                )
            )

            for call in response.tool_calls:
                if abort_event is not None and abort_event.is_set():
                    return self._cancelled(messages, "", turn_count, tools_used)

                self._emit(f"[tool] {call.name}({self._preview_args(call.arguments)})")
                try:
                    result = await self.tools.execute(call.name, call.arguments, abort_event=abort_event)
                except UserAbortError as e:
                    return self._cancelled(messages, e.partial_content, turn_count, tools_used)

                messages.append(Message(role="tool", content=result, tool_call_id=call.id))
                tools_used.append(call.name)

        log.warning("Agent hit max turns", max_turns=self.max_turns)
        return AgentResult(MAX_TURNS_TEXT, turn_count, tuple(tools_used))

    async def ask(
        self,
        user_input: str,
        messages: list[Message] | None = None,
        system_prompt: str = "",
        on_token: OnTokenCallback | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> AgentResult:
        """Append ``user_input`` to the conversation and run it.

        A fresh conversation starting with ``system_prompt`` is created when
        ``messages`` is not given.
        """
        if messages is None:
            messages = [Message(role="system", content=system_prompt)]
        messages.append(Message(role="user", content=user_input))
        return await self.run(messages, on_token=on_token, abort_event=abort_event)
