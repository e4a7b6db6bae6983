class ConfigError(RuntimeError):
    """Router configuration is missing or invalid (raised at startup)."""


class ClassificationUnavailable(RuntimeError):
    """The routing classifier failed or produced unusable output."""


class UpstreamCompletionFailure(RuntimeError):
    """The selected model's completion call failed."""

    def __init__(self, model: str, message: str = ""):
        self.model = model
        super().__init__(message or f"Completion call to {model} failed")
