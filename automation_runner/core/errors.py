class AutomationError(ValueError):
    """Base class for failures raised by the automation engine."""


class AutomationNotFoundError(AutomationError):
    pass


class RunNotFoundError(AutomationError):
    pass


class ApprovalRequiredError(AutomationError):
    """Automation requires approval and has not been approved."""


class InvalidGraphError(AutomationError):
    """Graph definition is malformed (duplicate ids, dangling edges, bad node types)."""


class UnknownActionError(AutomationError):
    def __init__(self, name: str):
        super().__init__(f"Unknown action: {name}")
        self.name = name


class SplitConfigurationError(AutomationError):
    pass


class ActionInputError(AutomationError):
    """Action handler received an input it cannot act on."""
