import httpx
from fastapi import HTTPException

from app.config import settings

PARENT_TYPES = {"space", "folder"}


def _clickup_headers(api_token: str) -> dict[str, str]:
    return {"Authorization": api_token, "Content-Type": "application/json"}


def build_client(
    api_token: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.clickup_api_base_url.rstrip("/"),
        headers=_clickup_headers(api_token),
        timeout=settings.http_timeout_seconds,
        transport=transport,
    )


def _parse_clickup_error(response: httpx.Response) -> tuple[str, str]:
    fallback_code = "clickup_request_failed"
    fallback_message = f"ClickUp API request failed with status {response.status_code}"

    try:
        payload = response.json()
    except ValueError:
        body = response.text.strip()
        return fallback_code, body or fallback_message

    if isinstance(payload, dict):
        return (
            str(payload.get("ECODE") or payload.get("code") or fallback_code),
            str(payload.get("err") or payload.get("message") or fallback_message),
        )

    return fallback_code, fallback_message


def _clickup_error_payload(response: httpx.Response) -> dict:
    error_code, error_message = _parse_clickup_error(response)
    detail: dict = {
        "code": error_code,
        "message": error_message,
        "status_code": response.status_code,
    }
    try:
        payload = response.json()
        if isinstance(payload, (dict, list)):
            detail["clickup_response"] = payload
    except ValueError:
        body = response.text.strip()
        if body:
            detail["clickup_response"] = body
    return detail


def _invalid_response(message: str) -> HTTPException:
    return HTTPException(
        status_code=502,
        detail={
            "code": "clickup_invalid_response",
            "message": message,
        },
    )


def error_status(error: HTTPException) -> int | None:
    detail = error.detail
    if isinstance(detail, dict) and isinstance(detail.get("status_code"), int):
        return detail["status_code"]
    return None


def error_code(error: HTTPException) -> str | None:
    detail = error.detail
    if isinstance(detail, dict) and detail.get("code"):
        return str(detail["code"])
    return None


def error_message(error: Exception) -> str:
    if isinstance(error, HTTPException):
        detail = error.detail
        if isinstance(detail, dict):
            return str(detail.get("message") or detail.get("code") or "ClickUp request failed")
        return str(detail) if detail is not None else "ClickUp request failed"
    return str(error) or error.__class__.__name__


def is_rate_limited(error: Exception) -> bool:
    return isinstance(error, HTTPException) and error_status(error) == 429


def resolve_api_token(api_token: str | None) -> str:
    token = (api_token or settings.clickup_api_token).strip()
    if not token:
        raise HTTPException(
            status_code=400,
            detail={
                "code": "missing_api_token",
                "message": "api_token is required when no default ClickUp token is configured",
            },
        )
    return token


async def _request(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    *,
    json: dict | None = None,
    params: dict | None = None,
) -> dict:
    try:
        response = await client.request(method, path, json=json, params=params)
    except httpx.HTTPError as exc:
        raise HTTPException(
            status_code=502,
            detail={
                "code": "clickup_unreachable",
                "message": f"ClickUp API request {method} {path} failed: {exc}",
            },
        ) from exc

    if response.status_code >= 400:
        raise HTTPException(status_code=502, detail=_clickup_error_payload(response))

    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        raise _invalid_response(f"ClickUp {method} {path} response was not JSON")
    if not isinstance(body, dict):
        raise _invalid_response(f"ClickUp {method} {path} response was not an object")
    return body


def _require_list(body: dict, key: str, label: str) -> list[dict]:
    items = body.get(key)
    if not isinstance(items, list):
        raise _invalid_response(f"ClickUp {label} response missing {key}")
    return [item for item in items if isinstance(item, dict)]


def _require_dict(body: dict, key: str, label: str) -> dict:
    item = body.get(key)
    if not isinstance(item, dict):
        raise _invalid_response(f"ClickUp {label} response missing {key}")
    return item


def _parent_path(parent_id: str, parent_type: str) -> str:
    if parent_type not in PARENT_TYPES:
        raise ValueError(f"parent_type must be one of {sorted(PARENT_TYPES)}, got {parent_type!r}")
    return f"/{parent_type}/{parent_id}"


async def get_current_user(client: httpx.AsyncClient) -> dict:
    body = await _request(client, "GET", "/user")
    return _require_dict(body, "user", "get user")


async def list_teams(client: httpx.AsyncClient) -> list[dict]:
    body = await _request(client, "GET", "/team")
    return _require_list(body, "teams", "list teams")


async def get_team(client: httpx.AsyncClient, team_id: str) -> dict:
    body = await _request(client, "GET", f"/team/{team_id}")
    return _require_dict(body, "team", "get team")


async def list_spaces(client: httpx.AsyncClient, team_id: str) -> list[dict]:
    body = await _request(client, "GET", f"/team/{team_id}/space")
    return _require_list(body, "spaces", "list spaces")


async def list_folders(client: httpx.AsyncClient, space_id: str) -> list[dict]:
    body = await _request(client, "GET", f"/space/{space_id}/folder")
    return _require_list(body, "folders", "list folders")


async def create_folder(client: httpx.AsyncClient, space_id: str, name: str) -> dict:
    body = await _request(client, "POST", f"/space/{space_id}/folder", json={"name": name})
    if not body.get("id"):
        raise _invalid_response("ClickUp create folder response missing id")
    return body


async def list_lists(client: httpx.AsyncClient, parent_id: str, parent_type: str) -> list[dict]:
    body = await _request(client, "GET", f"{_parent_path(parent_id, parent_type)}/list")
    return _require_list(body, "lists", "list lists")


async def create_list(
    client: httpx.AsyncClient,
    parent_id: str,
    parent_type: str,
    payload: dict,
) -> dict:
    body = await _request(
        client,
        "POST",
        f"{_parent_path(parent_id, parent_type)}/list",
        json=payload,
    )
    if not body.get("id"):
        raise _invalid_response("ClickUp create list response missing id")
    return body


async def add_list_status(
    client: httpx.AsyncClient,
    list_id: str,
    status: str,
    color: str,
) -> dict:
    return await _request(
        client,
        "POST",
        f"/list/{list_id}/status",
        json={"status": status, "color": color},
    )


async def list_list_members(client: httpx.AsyncClient, list_id: str) -> list[dict]:
    body = await _request(client, "GET", f"/list/{list_id}/member")
    members = body.get("members")
    if not isinstance(members, list):
        return []
    return [member for member in members if isinstance(member, dict)]


async def list_custom_fields(client: httpx.AsyncClient, list_id: str) -> list[dict]:
    body = await _request(client, "GET", f"/list/{list_id}/field")
    fields = body.get("fields")
    if fields is None:
        return []
    if not isinstance(fields, list):
        raise _invalid_response("ClickUp list custom fields response had invalid fields")
    return [field for field in fields if isinstance(field, dict)]


async def create_task(client: httpx.AsyncClient, list_id: str, payload: dict) -> dict:
    body = await _request(client, "POST", f"/list/{list_id}/task", json=payload)
    if not body.get("id"):
        raise _invalid_response("ClickUp create task response missing id")
    return body


async def get_task(client: httpx.AsyncClient, task_id: str) -> dict:
    return await _request(client, "GET", f"/task/{task_id}")


async def update_task(client: httpx.AsyncClient, task_id: str, payload: dict) -> dict:
    return await _request(client, "PUT", f"/task/{task_id}", json=payload)


async def delete_task(client: httpx.AsyncClient, task_id: str) -> None:
    await _request(client, "DELETE", f"/task/{task_id}")


async def set_custom_field_value(
    client: httpx.AsyncClient,
    task_id: str,
    field_id: str,
    value: object,
) -> dict:
    return await _request(
        client,
        "POST",
        f"/task/{task_id}/field/{field_id}",
        json={"value": value},
    )


async def create_task_comment(
    client: httpx.AsyncClient,
    task_id: str,
    comment_text: str,
    *,
    notify_all: bool = False,
) -> dict:
    return await _request(
        client,
        "POST",
        f"/task/{task_id}/comment",
        json={"comment_text": comment_text, "notify_all": notify_all},
    )


async def create_checklist(client: httpx.AsyncClient, task_id: str, name: str) -> dict:
    body = await _request(client, "POST", f"/task/{task_id}/checklist", json={"name": name})
    checklist = _require_dict(body, "checklist", "create checklist")
    if not checklist.get("id"):
        raise _invalid_response("ClickUp create checklist response missing checklist id")
    return checklist


async def create_checklist_item(
    client: httpx.AsyncClient,
    checklist_id: str,
    name: str,
    orderindex: int,
    *,
    resolved: bool = False,
) -> dict:
    body = await _request(
        client,
        "POST",
        f"/checklist/{checklist_id}/checklist_item",
        json={"name": name, "orderindex": orderindex, "resolved": resolved},
    )
    checklist = body.get("checklist")
    return checklist if isinstance(checklist, dict) else body