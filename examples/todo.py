# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "hyperdrive",
# ]
#
# [tool.uv.sources]
# hyperdrive = { path = "../", editable = true }
# ///
"""Todo list API demo.

Form-encoded todo service using the hyperdrive default middleware chain.
Configure with the environment, e.g.:

    PORT=8000 GZIP_LEVEL=9 CORS_ORIGINS=https://app.example.com uv run examples/todo.py

    curl -d 'title=buy milk' localhost:8000/todo
    curl localhost:8000/todo/1
"""

import json
from itertools import count

from hyperdrive import API, params, path_params
from hyperdrive.rsgi import HTTPProtocol, HTTPScope, RSGIHTTPHandler

JSON = [("content-type", "application/json")]

api = API("todo", "todo list service")


def list_todos(todos: dict[int, str]) -> RSGIHTTPHandler:
    async def handler(s: HTTPScope, p: HTTPProtocol) -> None:
        body = [{"id": k, "title": v} for k, v in todos.items()]
        p.response_str(200, JSON, json.dumps(body))

    return handler


def create_todo(todos: dict[int, str], ids: count) -> RSGIHTTPHandler:
    async def handler(s: HTTPScope, p: HTTPProtocol) -> None:
        title = (await params(s, p)).get_first("title")
        if not title:
            p.response_str(400, JSON, json.dumps({"error": "title is required"}))
            return
        todo_id = next(ids)
        todos[todo_id] = title
        p.response_str(201, JSON, json.dumps({"id": todo_id, "title": title}))

    return handler


def get_todo(todos: dict[int, str]) -> RSGIHTTPHandler:
    async def handler(s: HTTPScope, p: HTTPProtocol) -> None:
        todo_id = path_params().get_first("id")
        if not todo_id.isdigit() or int(todo_id) not in todos:
            p.response_str(404, JSON, json.dumps({"error": "todo not found"}))
            return
        p.response_str(
            200, JSON, json.dumps({"id": int(todo_id), "title": todos[int(todo_id)]})
        )

    return handler


def delete_todo(todos: dict[int, str]) -> RSGIHTTPHandler:
    async def handler(s: HTTPScope, p: HTTPProtocol) -> None:
        todo_id = path_params().get_first("id")
        if todo_id.isdigit():
            todos.pop(int(todo_id), None)
        p.response_empty(204, [])

    return handler


def main() -> None:
    todos: dict[int, str] = {}
    ids = count(1)
    api.router.get("/todo", list_todos(todos))
    api.router.post("/todo", create_todo(todos, ids))
    api.router.get("/todo/{id}", get_todo(todos))
    api.router.delete("/todo/{id}", delete_todo(todos))
    api.start()


if __name__ == "__main__":
    main()
