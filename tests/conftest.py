import copy
import itertools
import json
import re
from dataclasses import dataclass

import httpx
import pytest

from app.models.templates import Template
from app.services import clickup
from app.services.rate_limit import RateLimitGovernor

API_PREFIX = "/api/v2"


@dataclass
class InjectedFailure:
    method: str
    pattern: re.Pattern
    status_code: int
    body: dict
    on_call: int
    times: int
    seen: int = 0

    def matches(self, method: str, path: str) -> bool:
        if method != self.method or not self.pattern.fullmatch(path):
            return False
        self.seen += 1
        return self.on_call <= self.seen < self.on_call + self.times


class FakeClickUp:
    """In-memory ClickUp workspace served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.user = {"id": 101, "username": "lead", "email": "lead@example.com"}
        self.teams = [{"id": "team-1", "name": "Acme"}]
        self.members = [
            {"user": {"id": 101, "username": "lead", "email": "lead@example.com"}},
            {"user": {"id": 102, "username": "dev", "email": "dev@example.com"}},
        ]
        self.spaces = {"team-1": [{"id": "space-1", "name": "Operations"}]}
        self.folders = {"space-1": [{"id": "folder-1", "name": "Projects"}]}
        self.lists = {
            "folder-1": [{"id": "list-1", "name": "Launch"}],
            "space-1": [{"id": "list-9", "name": "Backlog"}],
        }
        self.fields = {"list-1": [{"id": "cf-due", "name": "Due Date", "type": "date"}]}
        self.list_members = {"list-1": [{"id": 101}]}
        self.tasks: dict[str, dict] = {}
        self.deleted: list[str] = []
        self.checklists: dict[str, dict] = {}
        self.statuses: dict[str, list[dict]] = {}
        self.comments: dict[str, list[str]] = {}
        self.calls: list[tuple[str, str, dict | None]] = []
        self.failures: list[InjectedFailure] = []
        self._ids = itertools.count(1)

    def fail(
        self,
        method: str,
        pattern: str,
        status_code: int,
        body: dict | None = None,
        *,
        on_call: int = 1,
        times: int = 1,
    ) -> None:
        self.failures.append(
            InjectedFailure(
                method=method,
                pattern=re.compile(pattern),
                status_code=status_code,
                body=body or {"err": "Injected failure", "ECODE": "TEST_001"},
                on_call=on_call,
                times=times,
            )
        )

    def calls_to(self, method: str, pattern: str) -> list[dict | None]:
        compiled = re.compile(pattern)
        return [body for m, path, body in self.calls if m == method and compiled.fullmatch(path)]

    def created_task_ids(self) -> list[str]:
        return list(self.tasks) + list(self.deleted)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith(API_PREFIX):
            path = path[len(API_PREFIX):]
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, path, body))

        for failure in self.failures:
            if failure.matches(request.method, path):
                return httpx.Response(failure.status_code, json=failure.body)

        return self._route(request.method, path, body or {})

    def _route(self, method: str, path: str, body: dict) -> httpx.Response:
        parts = path.strip("/").split("/")

        if method == "GET" and parts == ["user"]:
            return httpx.Response(200, json={"user": self.user})
        if method == "GET" and parts == ["team"]:
            return httpx.Response(200, json={"teams": self.teams})
        if parts[0] == "team" and len(parts) == 2:
            return httpx.Response(200, json={"team": {"id": parts[1], "members": self.members}})
        if parts[0] == "team" and parts[2:] == ["space"]:
            return httpx.Response(200, json={"spaces": self.spaces.get(parts[1], [])})

        if parts[0] == "space" and parts[2:] == ["folder"]:
            if method == "GET":
                return httpx.Response(200, json={"folders": self.folders.get(parts[1], [])})
            folder = {"id": self._next_id("folder"), "name": body["name"]}
            self.folders.setdefault(parts[1], []).append(folder)
            return httpx.Response(200, json=folder)

        if parts[0] in {"space", "folder"} and parts[2:] == ["list"]:
            if method == "GET":
                return httpx.Response(200, json={"lists": self.lists.get(parts[1], [])})
            created = {"id": self._next_id("list"), "name": body["name"]}
            self.lists.setdefault(parts[1], []).append(created)
            self.statuses[created["id"]] = list(body.get("statuses", []))
            return httpx.Response(200, json=created)

        if parts[0] == "list" and parts[2:] == ["status"]:
            self.statuses.setdefault(parts[1], []).append(body)
            return httpx.Response(200, json={})
        if parts[0] == "list" and parts[2:] == ["member"]:
            return httpx.Response(200, json={"members": self.list_members.get(parts[1], [])})
        if parts[0] == "list" and parts[2:] == ["field"]:
            return httpx.Response(200, json={"fields": self.fields.get(parts[1], [])})
        if parts[0] == "list" and parts[2:] == ["task"]:
            return self._create_task(parts[1], body)

        if parts[0] == "task":
            return self._task_route(method, parts, body)

        if parts[0] == "checklist" and parts[2:] == ["checklist_item"]:
            checklist = self.checklists[parts[1]]
            checklist["items"].append(dict(body))
            return httpx.Response(200, json={"checklist": checklist})

        return httpx.Response(404, json={"err": f"Route not found: {path}", "ECODE": "TEST_404"})

    def _create_task(self, list_id: str, body: dict) -> httpx.Response:
        task = {
            "id": self._next_id("task"),
            "name": body["name"],
            "list": {"id": list_id},
            "parent": body.get("parent"),
            "assignees": [{"id": int(user_id)} for user_id in body.get("assignees", [])],
            "watchers": [],
            "payload": copy.deepcopy(body),
            "url": "https://app.clickup.com/t/fake",
        }
        self.tasks[task["id"]] = task
        return httpx.Response(200, json=task)

    def _task_route(self, method: str, parts: list[str], body: dict) -> httpx.Response:
        task_id = parts[1]
        task = self.tasks.get(task_id)
        if task is None:
            return httpx.Response(404, json={"err": "Task not found", "ECODE": "ITEM_013"})

        if len(parts) == 2:
            if method == "GET":
                return httpx.Response(200, json=task)
            if method == "PUT":
                task["watchers"].extend(body.get("watchers_add", []))
                return httpx.Response(200, json=task)
            if method == "DELETE":
                del self.tasks[task_id]
                self.deleted.append(task_id)
                return httpx.Response(200, json={})

        if parts[2:3] == ["field"]:
            for field in task.get("custom_fields", []):
                if field["id"] == parts[3]:
                    field["value"] = body["value"]
            return httpx.Response(200, json={})
        if parts[2:] == ["comment"]:
            self.comments.setdefault(task_id, []).append(body["comment_text"])
            return httpx.Response(200, json={"id": self._next_id("comment")})
        if parts[2:] == ["checklist"]:
            checklist = {"id": self._next_id("checklist"), "name": body["name"], "items": []}
            self.checklists[checklist["id"]] = checklist
            return httpx.Response(200, json={"checklist": checklist})

        return httpx.Response(404, json={"err": "Route not found", "ECODE": "TEST_404"})


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_clickup() -> FakeClickUp:
    return FakeClickUp()


@pytest.fixture
def clickup_client(fake_clickup: FakeClickUp) -> httpx.AsyncClient:
    return clickup.build_client("pk_test", transport=httpx.MockTransport(fake_clickup.handler))


@pytest.fixture
def sleeps() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def governor(sleeps: RecordingSleep) -> RateLimitGovernor:
    return RateLimitGovernor(delay_between_calls_ms=0, sleep=sleeps)


def _template_payload() -> dict:
    return {
        "meta": {"slug": "launch", "version": "1.0"},
        "destination": {"space_name": "Operations", "folder_name": "Projects", "list_name": "Launch"},
        "defaults": {"priority": 2, "tags": ["launch"], "custom_fields": {}},
        "roles_map": {"owner": "lead@example.com", "engineer": "dev@example.com"},
        "phases": [
            {
                "key": "discovery",
                "name": "Discovery",
                "assignee_role": "owner",
                "tags": ["phase-1"],
                "actions": [
                    {
                        "name": "Kickoff",
                        "assignee_role": "engineer",
                        "checklist": {"items": ["Invite team", "Book room"]},
                        "watchers": ["lead@example.com"],
                    },
                    {"name": "Interviews", "assignee_role": "engineer"},
                ],
            }
        ],
    }


@pytest.fixture
def template_payload() -> dict:
    return _template_payload()


@pytest.fixture
def make_template():
    def _make(**overrides) -> Template:
        payload = _template_payload()
        payload.update(overrides)
        return Template.model_validate(payload)

    return _make
