# errors.py
"""Exception types raised by managers, resources and the orchestrator."""


class ProviderError(Exception):
    """Base class for every error raised by vsprov."""


class ResourceNotFoundError(ProviderError):
    """The remote object no longer exists."""


class TaskError(ProviderError):
    """A vCenter SOAP task or a vAPI cis task finished with an error."""


class PollTimeoutError(ProviderError):
    """A polling loop ran out of time before reaching a terminal state."""


class ValidationError(ProviderError):
    """Configuration did not pass schema validation."""

    def __init__(self, messages):
        if isinstance(messages, str):
            messages = [messages]
        self.messages = list(messages)
        super().__init__("; ".join(self.messages))


def wrap(error, resource_id, action):
    """
    Wraps an error with the resource identifier and the action that failed.

    :param error: The original exception or message.
    :param resource_id: Id or address of the resource being processed.
    :param action: Name of the operation (create, read, update, delete, ...).
    :return: A ProviderError of the same class when possible.
    """
    message = f"{error}: RESOURCE ({resource_id}), ACTION ({action})"
    if isinstance(error, ValidationError):
        wrapped = ValidationError([message])
    elif isinstance(error, ProviderError):
        wrapped = type(error)(message)
    else:
        wrapped = ProviderError(message)
    wrapped.__cause__ = error
    return wrapped
