"""LLM client: streaming chat completions against any OpenAI-compatible API.

Lowest layer. Knows nothing about agents or tools beyond their schemas; it
sends the conversation, streams the answer back and reassembles it.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable

import httpx

from ephileo.config import Config
from ephileo.exceptions import LLMAPIError, LLMError, LLMTimeoutError, UserAbortError
from ephileo.llm.messages import LLMResponse, Message, Role, ToolCall
from ephileo.llm.streaming import (
    ContentDelta,
    ReasoningDelta,
    ReasoningSplitter,
    ResponseAssembler,
    StreamDecoder,
    StreamEvent,
)
from ephileo.logging import get_logger

log = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT = 120.0

# Called with (token, is_reasoning) while the response streams in.
OnTokenCallback = Callable[[str, bool], None]


class LLMProvider(ABC):
    """Abstract base class for chat providers."""

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        on_token: OnTokenCallback | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> LLMResponse:
        pass

    async def close(self) -> None:
        """Release provider resources."""
        return None


def _ignore_token(text: str, is_reasoning: bool) -> None:
    return None


async def _cancel_task(task: "asyncio.Future[Any] | None") -> None:
    """Cancel task and await it to avoid pending task warnings."""
    if task is None:
        return
    if task.done():
        # Mark a failure nobody will read as retrieved.
        if not task.cancelled():
            task.exception()
        return
    task.cancel()
    try:
        await task
    except (asyncio.CancelledError, StopAsyncIteration):
        pass
    except Exception:
        log.debug("Cancelled stream read raised", exc_info=True)


async def _race(
    task: "asyncio.Future[Any]",
    abort_event: asyncio.Event | None,
    abort_wait_task: "asyncio.Task[bool] | None",
    deadline: float,
    timeout: float,
    assembler: ResponseAssembler,
) -> None:
    """Wait for ``task`` unless the user aborts or the deadline passes first.

    An abort takes precedence over a task that completed in the same
    iteration.
    """
    loop = asyncio.get_running_loop()
    if abort_event is not None and abort_event.is_set():
        raise UserAbortError(partial_content=assembler.partial_content())
    remaining = deadline - loop.time()
    if remaining <= 0:
        raise LLMTimeoutError(timeout)

    waiters: set[asyncio.Future[Any]] = {task}
    if abort_wait_task is not None:
        waiters.add(abort_wait_task)
    done, _ = await asyncio.wait(waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)

    if abort_event is not None and abort_event.is_set():
        log.info("LLM stream aborted by user")
        raise UserAbortError(partial_content=assembler.partial_content())
    if task not in done:
        raise LLMTimeoutError(timeout)


class LLMClient(LLMProvider):
    """Streaming client for ``{base_url}/chat/completions``."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str | None = None,
        max_tokens: int = 4096,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: API base URL, e.g. ``http://127.0.0.1:11434/v1``
            model: Model name sent with every request
            api_key: Optional bearer token
            max_tokens: ``max_tokens`` sent with every request
            timeout: Absolute per-request deadline in seconds, measured from
                request start across the whole streamed body
            client: Optional preconfigured ``httpx.AsyncClient``
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
        )

    @staticmethod
    def _convert_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Wrap ``{name, description, parameters}`` schemas for function calling."""
        result = []
        for tool in tools:
            name = tool.get("name")
            if not name:
                continue
            result.append({
                "type": "function",
                "function": {
                    "name": name,
                    "description": tool.get("description") or "",
                    "parameters": tool.get("parameters") or {},
                },
            })
        return result

    def _build_body(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_wire() for m in messages],
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        wire_tools = self._convert_tools(tools) if tools else []
        if wire_tools:
            body["tools"] = wire_tools
        return body

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def chat(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        on_token: OnTokenCallback | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> LLMResponse:
        """Send the conversation and stream the reply.

        Tokens are forwarded to ``on_token`` as they arrive, split into
        visible and reasoning spans. The assembled response is returned at
        the end of the stream.

        Raises:
            LLMAPIError: non-2xx status or network failure
            LLMTimeoutError: the absolute request deadline passed
            UserAbortError: ``abort_event`` was set; carries the visible text
                assembled so far
        """
        url = f"{self.base_url}/chat/completions"
        body = self._build_body(messages, tools)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        if abort_event is not None and abort_event.is_set():
            raise UserAbortError()

        decoder = StreamDecoder()
        assembler = ResponseAssembler()
        emit = on_token or _ignore_token
        splitter = ReasoningSplitter(emit)

        def dispatch(events: list[StreamEvent]) -> None:
            for event in events:
                assembler.feed(event)
                if isinstance(event, ContentDelta):
                    splitter.feed(event.text)
                elif isinstance(event, ReasoningDelta):
                    emit(event.text, True)

        abort_wait_task: asyncio.Task[bool] | None = None
        pending: "asyncio.Future[Any] | None" = None
        response: httpx.Response | None = None

        async def wait(task: "asyncio.Future[Any]") -> None:
            await _race(task, abort_event, abort_wait_task, deadline, self.timeout, assembler)

        try:
            log.debug("Calling LLM", model=self.model, url=url, msg_count=len(messages))
            if abort_event is not None:
                abort_wait_task = asyncio.create_task(abort_event.wait())

            request = self.client.build_request("POST", url, json=body, headers=self._headers())
            pending = asyncio.ensure_future(self.client.send(request, stream=True))
            await wait(pending)
            response = pending.result()
            pending = None

            log.debug("LLM response status", status=response.status_code)
            if not response.is_success:
                error_text = (await response.aread()).decode("utf-8", errors="replace")
                raise LLMAPIError(
                    f"LLM request failed ({response.status_code}): {error_text}",
                    status_code=response.status_code,
                    body=error_text,
                )

            chunks: AsyncIterator[bytes] = response.aiter_bytes().__aiter__()
            while not decoder.done:
                pending = asyncio.ensure_future(chunks.__anext__())
                await wait(pending)
                try:
                    chunk = pending.result()
                except StopAsyncIteration:
                    dispatch(decoder.finish())
                    break
                finally:
                    pending = None
                dispatch(decoder.feed(chunk))

            splitter.flush()
            result = assembler.build()
            log.debug(
                "LLM response assembled",
                finish_reason=result.finish_reason,
                tool_calls=len(result.tool_calls),
                content_chars=len(result.content or ""),
            )
            return result

        except (UserAbortError, LLMError):
            raise
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(self.timeout) from e
        except httpx.HTTPError as e:
            raise LLMAPIError(f"LLM HTTP error: {e}") from e
        finally:
            if response is None and pending is not None and pending.done():
                # Headers arrived together with the abort or the deadline.
                if not pending.cancelled() and pending.exception() is None:
                    response = pending.result()
            await _cancel_task(pending)
            await _cancel_task(abort_wait_task)
            if response is not None:
                await response.aclose()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_client(config: Config) -> LLMClient:
    """Create a client for the configured active provider."""
    provider = config.active_provider()
    return LLMClient(
        base_url=provider.base_url,
        model=provider.model,
        api_key=provider.api_key or None,
        max_tokens=config.agent.max_tokens,
        timeout=config.agent.request_timeout,
    )


__all__ = [
    "LLMClient",
    "LLMProvider",
    "LLMResponse",
    "Message",
    "OnTokenCallback",
    "Role",
    "ToolCall",
    "create_client",
]
