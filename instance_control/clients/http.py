import logging
import time
from typing import Any

import httpx


logger = logging.getLogger(__name__)

OPERATION_CREATED = 100
OPERATION_SUCCESS = 200
OPERATION_FAILURE = 400
OPERATION_CANCELLED = 401
TERMINAL_FAILURE_CODES = {OPERATION_FAILURE, OPERATION_CANCELLED}


class LXDError(RuntimeError):
    def __init__(
        self,
        *,
        method: str,
        url: str,
        detail: str,
        status_code: int | None = None,
    ):
        self.method = method
        self.url = url
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"{method} {url} failed: {detail}")


class RemoteUnavailable(LXDError):
    pass


class RemoteNotFound(LXDError):
    pass


class RemoteRequestFailed(LXDError):
    pass


class RemoteTimeout(LXDError):
    pass


class OperationFailed(LXDError):
    pass


def _error_detail(response: httpx.Response, envelope: Any) -> str:
    if isinstance(envelope, dict):
        error = envelope.get("error")
        if isinstance(error, str) and error:
            return f"HTTP {response.status_code}: {error}"
    body = (response.text or "").strip()
    return (
        f"HTTP {response.status_code}: {body[:240]}"
        if body
        else f"HTTP {response.status_code}"
    )


def lxd_request(
    client: httpx.Client,
    method: str,
    url: str,
    payload: dict | None = None,
    *,
    timeout: float | None = None,
    project: str | None = None,
) -> dict:
    kwargs: dict[str, Any] = {}
    if payload is not None:
        kwargs["json"] = payload
    if timeout is not None:
        kwargs["timeout"] = timeout
    if project:
        kwargs["params"] = {"project": project}

    logger.debug("lxd request method=%s url=%s", method, url)
    try:
        response = client.request(method, url, **kwargs)
    except (httpx.ConnectTimeout, httpx.PoolTimeout) as exc:
        # The daemon was never reached.
        raise RemoteUnavailable(
            method=method, url=url, detail=str(exc) or exc.__class__.__name__
        ) from exc
    except httpx.TimeoutException as exc:
        raise RemoteTimeout(
            method=method, url=url, detail=str(exc) or exc.__class__.__name__
        ) from exc
    except httpx.TransportError as exc:
        raise RemoteUnavailable(
            method=method, url=url, detail=str(exc) or exc.__class__.__name__
        ) from exc

    try:
        envelope = response.json()
    except ValueError:
        envelope = None

    if response.status_code == 404 or (
        isinstance(envelope, dict) and envelope.get("error_code") == 404
    ):
        raise RemoteNotFound(
            method=method,
            url=url,
            detail=_error_detail(response, envelope),
            status_code=404,
        )
    if not isinstance(envelope, dict):
        raise RemoteRequestFailed(
            method=method,
            url=url,
            detail=f"invalid JSON reply ({_error_detail(response, envelope)})",
            status_code=response.status_code,
        )
    if response.status_code >= 400 or envelope.get("type") == "error":
        raise RemoteRequestFailed(
            method=method,
            url=url,
            detail=_error_detail(response, envelope),
            status_code=response.status_code,
        )
    return envelope


def is_background_operation(envelope: dict) -> bool:
    return (
        envelope.get("type") == "async"
        or envelope.get("status_code") == OPERATION_CREATED
    )


def operation_id(envelope: dict) -> str | None:
    metadata = envelope.get("metadata")
    if isinstance(metadata, dict):
        op_id = metadata.get("id")
        if isinstance(op_id, str) and op_id:
            return op_id
    operation = envelope.get("operation")
    if isinstance(operation, str) and operation.strip("/"):
        return operation.rstrip("/").rsplit("/", 1)[-1]
    return None


def lxd_wait(
    client: httpx.Client,
    base_url: str,
    envelope: dict,
    timeout_sec: float,
    *,
    poll_interval_sec: float = 0.5,
    project: str | None = None,
) -> dict:
    if not is_background_operation(envelope):
        return {}

    op_id = operation_id(envelope)
    if op_id is None:
        raise RemoteRequestFailed(
            method="GET",
            url=base_url,
            detail="background operation reply carries no operation id",
        )

    url = f"{base_url.rstrip('/')}/operations/{op_id}"
    deadline = time.monotonic() + timeout_sec
    while True:
        try:
            reply = lxd_request(client, "GET", url, project=project)
        except RemoteNotFound:
            # Reaped operations have already finished.
            logger.debug("lxd operation gone before completion id=%s", op_id)
            return {}

        metadata = reply.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        status_code = metadata.get("status_code")
        if status_code == OPERATION_SUCCESS:
            return reply
        if status_code in TERMINAL_FAILURE_CODES:
            detail = metadata.get("err") or metadata.get("status") or "failed"
            raise OperationFailed(
                method="GET",
                url=url,
                detail=f"operation {op_id}: {detail}",
                status_code=status_code,
            )

        now = time.monotonic()
        if now >= deadline:
            raise RemoteTimeout(
                method="GET",
                url=url,
                detail=f"operation {op_id} not complete after {timeout_sec}s",
            )
        time.sleep(min(poll_interval_sec, deadline - now))
