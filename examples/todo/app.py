import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from txflow import (
    Err,
    IsolationLevel,
    Page,
    Repository,
    StepCompositeFailure,
    TransactionController,
    ValidationFailure,
)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS todos (
        id INTEGER PRIMARY KEY,
        text TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'PENDING',
        due_date TEXT,
        author_id INTEGER NOT NULL REFERENCES users (id)
    )
    """,
)


@dataclass
class User:
    id: int
    name: str
    email: str


@dataclass
class Todo:
    id: int
    text: str
    status: str
    author_id: int
    due_date: Optional[str] = None


class UserRepository(Repository[User]):
    table = "users"
    model = User


class TodoRepository(Repository[Todo]):
    table = "todos"
    model = Todo
    deleted_marker = ("status", "DELETED")
    order_by = "id DESC"


class TodoService:
    def __init__(self, controller: TransactionController):
        self.controller = controller

    async def register(self, name: str, email: str) -> User:
        async def check_unique(ctx):
            if await UserRepository(ctx).exists(email=email):
                return Err(ValidationFailure(f"{email} is already taken"))

        def create_user(ctx):
            return UserRepository(ctx).insert(name=name, email=email)

        _, user = await self.controller.execute_dependent(
            [check_unique, create_user], IsolationLevel.SERIALIZABLE
        )
        return user

    async def create_todo(
        self, user_id: int, text: str, due_date: Optional[str] = None
    ) -> Todo:
        def find_author(ctx):
            return UserRepository(ctx).get(user_id)

        def create(ctx):
            return TodoRepository(ctx).insert(
                text=text, author_id=user_id, due_date=due_date
            )

        _, todo = await self.controller.execute_dependent(
            [find_author, create], IsolationLevel.SERIALIZABLE
        )
        return todo

    async def list_todos(
        self, user_id: int, page: int = 1, limit: int = 10
    ) -> Page[Todo]:
        def find_author(ctx):
            return UserRepository(ctx).get(user_id)

        def find_todos(ctx):
            return TodoRepository(ctx).find(
                {"author_id": user_id}, page=page, limit=limit
            )

        _, todos = await self.controller.execute_dependent(
            [find_author, find_todos], IsolationLevel.REPEATABLE_READ
        )
        return todos

    async def complete_todo(self, user_id: int, todo_id: int) -> Todo:
        async def complete(ctx):
            repository = TodoRepository(ctx)
            todo = await repository.get(todo_id)
            if todo.author_id != user_id:
                raise ValidationFailure(f"Todo {todo_id} is not yours")
            return await repository.update(todo_id, status="DONE")

        return await self.controller.execute_with_retry(
            complete, IsolationLevel.SERIALIZABLE
        )

    async def delete_todo(self, user_id: int, todo_id: int) -> bool:
        async def find_owned(ctx):
            todo = await TodoRepository(ctx).get(todo_id)
            if todo.author_id != user_id:
                return Err(ValidationFailure(f"Todo {todo_id} is not yours"))
            return todo

        def delete(ctx):
            return TodoRepository(ctx).soft_delete(todo_id)

        _, deleted = await self.controller.execute_dependent(
            [find_owned, delete], IsolationLevel.SERIALIZABLE
        )
        return deleted


async def create_schema(ctx):
    for statement in SCHEMA:
        await ctx.execute(statement, no_result=True)


async def run():
    logging.basicConfig(level=logging.INFO)
    async with TransactionController.from_dsn(
        "sqlite:///todo.db", isolation_level="serializable"
    ) as controller:
        await controller.execute(create_schema)
        service = TodoService(controller)

        try:
            ada = await service.register("Ada", "ada@example.com")
        except StepCompositeFailure as e:
            print(f"Registration failed at step {e.step_index}: {e.cause}")
            return

        todo = await service.create_todo(ada.id, "Write docs", "2026-11-01")
        await service.create_todo(ada.id, "Ship release")
        print(await service.complete_todo(ada.id, todo.id))
        print(await service.delete_todo(ada.id, todo.id))
        print(await service.list_todos(ada.id))

        try:
            await service.create_todo(9999, "Orphan")
        except StepCompositeFailure as e:
            print(f"Not created, step {e.step_index} failed: {e.cause}")


if __name__ == "__main__":
    asyncio.run(run())
