"""Custom exceptions for Mail TODO Agent."""


class MailTodoError(Exception):
    """Base exception for all Mail TODO Agent errors."""


class ConfigurationError(MailTodoError):
    """Exception raised for configuration related errors."""


class AuthenticationError(MailTodoError):
    """Exception raised when the mail store cannot be authenticated."""


class MailStoreError(MailTodoError):
    """Exception raised for mail store (Gmail API) related errors."""


class BackendError(MailTodoError):
    """Base exception for LLM backend failures."""


class BackendConnectionError(BackendError):
    """Exception raised when no backend candidate URL could be reached."""


class BackendResponseError(BackendError):
    """Exception raised when the backend answers with an error or a malformed body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotAuthenticatedError(BackendError):
    """Exception raised when the backend reports a missing LLM login."""


class InputRejectedError(MailTodoError):
    """Exception raised when a request is invalid before any work is done."""


class TodoNotFoundError(InputRejectedError):
    """Exception raised when a TODO id does not exist in the active list."""


class StateStoreError(MailTodoError):
    """Exception raised when the local TODO state cannot be written."""
