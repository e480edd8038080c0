"""Custom exceptions for Ephileo."""


class EphileoError(Exception):
    """Base exception for Ephileo."""

    pass


class ConfigurationError(EphileoError):
    """Configuration-related errors."""

    pass


class LLMError(EphileoError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (non-2xx status, network failure)."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class LLMTimeoutError(LLMError):
    """The streamed request exceeded its absolute deadline."""

    def __init__(self, timeout_seconds: float):
        label = int(timeout_seconds) if float(timeout_seconds).is_integer() else timeout_seconds
        super().__init__(f"LLM request timed out after {label}s")
        self.timeout_seconds = timeout_seconds


class ToolError(EphileoError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class UserAbortError(Exception):
    """The user cancelled an in-flight operation.

    Not an ``EphileoError``: every layer re-raises it instead of turning it
    into an error string. Carries any visible model text assembled before
    the abort.
    """

    def __init__(self, message: str = "Operation cancelled by user", partial_content: str = ""):
        super().__init__(message)
        self.partial_content = partial_content
