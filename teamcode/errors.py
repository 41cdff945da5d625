"""
Exceptions that cross module boundaries.

Most failures in teamcode are NOT exceptions: a tool that fails, is unknown,
or is refused comes back as a failed ToolResult so the model can adapt, and
an illegal task transition returns False. Only conditions that stop a caller
from making progress are raised.
"""


class TeamcodeError(Exception):
    pass


class ProviderError(TeamcodeError):
    """The model backend failed. Fatal to the current run(), never retried."""


class TeamError(TeamcodeError):
    """Team lifecycle misuse: creating a second team, starting none."""


class TaskQueueError(TeamcodeError):
    """A task was added with a dependency on an id the queue does not know."""
