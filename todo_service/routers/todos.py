from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status

from todo_service.container import TodoServices
from todo_service.models import TodoCreate, TodoResponse, TodoUpdate

router = APIRouter(prefix="/api/v1/todos", tags=["todos"])


def get_services(request: Request) -> TodoServices:
    return request.app.state.services


@router.post("/", response_model=TodoResponse, status_code=status.HTTP_201_CREATED)
async def create_todo(payload: TodoCreate, services: TodoServices = Depends(get_services)):
    """Create a new todo"""
    return await services.todos.create(payload.description, payload.due_datetime)


@router.get("/", response_model=list[TodoResponse])
async def list_todos(
    all: bool = Query(default=False, description="If true, list every todo; otherwise only NOT_DONE ones"),
    services: TodoServices = Depends(get_services),
):
    return await services.reader.list(all)


@router.get("/{todo_id}", response_model=TodoResponse)
async def get_todo(todo_id: UUID, services: TodoServices = Depends(get_services)):
    """Get a specific todo by ID"""
    return await services.reader.get_by_id(todo_id)


@router.patch("/{todo_id}/description", response_model=TodoResponse)
async def update_description(
    todo_id: UUID, payload: TodoUpdate, services: TodoServices = Depends(get_services)
):
    return await services.todos.update_description(todo_id, payload.description)


@router.post("/{todo_id}/done", response_model=TodoResponse)
async def mark_done(todo_id: UUID, services: TodoServices = Depends(get_services)):
    """Mark a todo as done"""
    return await services.todos.mark_done(todo_id)


@router.post("/{todo_id}/not-done", response_model=TodoResponse)
async def mark_not_done(todo_id: UUID, services: TodoServices = Depends(get_services)):
    """Mark a todo as not done"""
    return await services.todos.mark_not_done(todo_id)
