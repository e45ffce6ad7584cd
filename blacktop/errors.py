"""Exception taxonomy shared by the plugin manager, messaging service and client store."""

from typing import Optional


class BlacktopError(Exception):
    """Base class for every error raised by the module platform."""

    status_code = 400


class ValidationError(BlacktopError):
    """A plugin object does not satisfy the required interface."""

    def __init__(self, message: str, member: Optional[str] = None):
        super().__init__(message)
        self.member = member


class PluginNotFoundError(BlacktopError):
    """The requested plugin or module id is unknown."""

    def __init__(self, plugin_id: str, message: Optional[str] = None):
        super().__init__(message or f"Plugin {plugin_id} not found")
        self.plugin_id = plugin_id


class NotLoadedError(BlacktopError):
    """The operation requires the plugin to be loaded."""

    def __init__(self, plugin_id: str):
        super().__init__(f"Plugin {plugin_id} is not loaded")
        self.plugin_id = plugin_id


class AlreadyLoadedError(BlacktopError):
    """The plugin is already loaded (enforced by the HTTP layer)."""

    def __init__(self, plugin_id: str):
        super().__init__(f"Plugin {plugin_id} is already loaded")
        self.plugin_id = plugin_id


class InstallError(BlacktopError):
    """The package installer failed."""


class SignatureError(InstallError):
    """A package failed signature verification."""


class RequestTimeoutError(BlacktopError, TimeoutError):
    """No reply arrived for a messaging request in time."""

    def __init__(self, topic: str, timeout_ms: int):
        super().__init__(f"Request to {topic} timed out after {timeout_ms}ms")
        self.topic = topic
        self.timeout_ms = timeout_ms


class NetworkError(BlacktopError):
    """Fetching remote module code or calling the server failed."""
