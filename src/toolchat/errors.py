"""Exception types shared across toolchat.

Tool failures are not exceptions: they travel as values on ToolCallResult
so the conversation can fold them back to the model. The exceptions here
cover the cases that abort an operation outright.
"""


class ToolchatError(Exception):
    """Base class for toolchat errors."""


class ConfigurationError(ToolchatError):
    """Raised when the configuration snapshot cannot start a session."""


class ModelAPIError(ToolchatError):
    """Raised when the model API answers a chat request with a non-2xx status.

    Attributes:
        status_code: HTTP status returned by the model API.
        message: Error detail extracted from the response body.
    """

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Model API returned {status_code}: {message}")
