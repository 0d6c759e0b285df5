import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import field_validator
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TodoStatus(str, Enum):
    NOT_DONE = "NOT_DONE"
    DONE = "DONE"
    PAST_DUE = "PAST_DUE"


class TodoItem(SQLModel, table=True):
    """Database model"""

    __tablename__ = "todo_items"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    description: str = Field(min_length=1)
    status: TodoStatus = Field(
        default=TodoStatus.NOT_DONE,
        sa_column=Column(
            SAEnum(TodoStatus, name="todo_status"), nullable=False, index=True
        ),
    )
    creation_datetime: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    due_datetime: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
    done_datetime: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class TodoCreate(SQLModel):
    """Schema for creating a todo"""

    description: str = Field(min_length=1)
    due_datetime: datetime

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("description must not be blank")
        return v

    @field_validator("due_datetime")
    @classmethod
    def normalize_due(cls, v: datetime) -> datetime:
        return as_utc(v)


class TodoUpdate(SQLModel):
    """Schema for replacing the description of a todo"""

    description: str = Field(min_length=1)

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("description must not be blank")
        return v


class TodoResponse(SQLModel):
    """Snapshot of a todo as handed to callers and stored in the cache.

    Timestamps and description are optional so the degraded placeholder served
    while a circuit breaker is open fits the same shape.
    """

    id: uuid.UUID
    description: str | None = None
    status: TodoStatus | None = None
    creation_datetime: datetime | None = None
    due_datetime: datetime | None = None
    done_datetime: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("creation_datetime", "due_datetime", "done_datetime")
    @classmethod
    def normalize_timestamps(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)

    @classmethod
    def from_item(cls, item: TodoItem) -> "TodoResponse":
        return cls.model_validate(item)

    @classmethod
    def unavailable(cls, item_id: uuid.UUID) -> "TodoResponse":
        # PAST_DUE tells callers not to trust or mutate the placeholder
        return cls(
            id=item_id,
            description="Service unavailable",
            status=TodoStatus.PAST_DUE,
        )
