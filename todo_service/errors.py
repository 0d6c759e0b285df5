from uuid import UUID


class TodoServiceError(Exception):
    """Base class for errors raised by the todo lifecycle core."""


class ValidationError(TodoServiceError):
    """Bad input; nothing was persisted."""


class NotFoundError(TodoServiceError):
    def __init__(self, item_id: UUID):
        self.item_id = item_id
        super().__init__(f"Item {item_id} not found")


class ImmutablePastDueError(TodoServiceError):
    def __init__(self, item_id: UUID):
        self.item_id = item_id
        super().__init__(f"Item {item_id} is past due and cannot be modified.")


class RateLimitedError(TodoServiceError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Rate limit '{name}' exceeded. Try again later.")


class UnavailableError(TodoServiceError):
    """Raised when a circuit breaker is open and no fallback is defined."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Circuit breaker '{name}' is OPEN")
