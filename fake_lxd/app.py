import copy
import uuid
from datetime import UTC, datetime
from threading import Lock

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fake_lxd.config import get_settings


app = FastAPI(title="Fake LXD")

PREFIX = "/1.0"
STATUS_NAMES = {
    101: "Started",
    102: "Stopped",
    103: "Running",
    104: "Cancelling",
    106: "Starting",
    107: "Stopping",
    108: "Aborting",
    109: "Freezing",
    110: "Frozen",
    111: "Thawed",
    112: "Error",
}
ACTION_STATUS_CODES = {
    "start": 103,
    "restart": 103,
    "stop": 102,
    "freeze": 110,
    "unfreeze": 103,
}
ACTION_DESCRIPTIONS = {
    "start": "Starting instance",
    "restart": "Restarting instance",
    "stop": "Stopping instance",
    "freeze": "Freezing instance",
    "unfreeze": "Unfreezing instance",
}

_lock = Lock()
_instances: dict[str, dict] = {}
_operations: dict[str, dict] = {}
_leases: dict[str, list[dict]] = {}
_requests: list[tuple[str, str]] = []


def reset() -> None:
    with _lock:
        _instances.clear()
        _operations.clear()
        _leases.clear()
        _requests.clear()


def add_instance(
    name: str,
    status_code: int = 102,
    config: dict | None = None,
    devices: dict | None = None,
) -> None:
    now = datetime.now(UTC).isoformat()
    with _lock:
        _instances[name] = {
            "name": name,
            "type": "virtual-machine",
            "project": get_settings().default_project,
            "status_code": status_code,
            "config": dict(config or {}),
            "devices": copy.deepcopy(devices or {}),
            "source": {},
            "created_at": now,
        }


def set_status(name: str, status_code: int) -> None:
    with _lock:
        _instances[name]["status_code"] = status_code


def set_leases(bridge: str, leases: list[dict]) -> None:
    with _lock:
        _leases[bridge] = [dict(lease) for lease in leases]


def instance(name: str) -> dict | None:
    with _lock:
        row = _instances.get(name)
        return copy.deepcopy(row) if row else None


def request_log() -> list[tuple[str, str]]:
    with _lock:
        return list(_requests)


def _sync(metadata) -> dict:
    return {
        "type": "sync",
        "status": "Success",
        "status_code": 200,
        "error_code": 0,
        "error": "",
        "metadata": metadata,
    }


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "type": "error",
            "error": message,
            "error_code": status_code,
            "metadata": None,
        },
    )


def _operation(description: str, resources: dict) -> dict:
    now = datetime.now(UTC).isoformat()
    op_id = str(uuid.uuid4())
    record = {
        "id": op_id,
        "class": "task",
        "description": description,
        "created_at": now,
        "updated_at": now,
        "status": "Success",
        "status_code": 200,
        "resources": resources,
        "metadata": None,
        "may_cancel": False,
        "err": "",
    }
    _operations[op_id] = record
    return {
        "type": "async",
        "status": "Operation created",
        "status_code": 100,
        "error_code": 0,
        "error": "",
        "operation": f"{PREFIX}/operations/{op_id}",
        "metadata": {**record, "status": "Running", "status_code": 103},
    }


def _instance_view(row: dict) -> dict:
    view = copy.deepcopy(row)
    view["status"] = STATUS_NAMES.get(row["status_code"], "Unknown")
    return view


@app.middleware("http")
async def record_requests(request: Request, call_next):
    with _lock:
        _requests.append((request.method, request.url.path))
    return await call_next(request)


@app.get("/healthz")
def healthz() -> dict:
    settings = get_settings()
    with _lock:
        count = len(_instances)
    return {
        "status": "ok",
        "server_version": settings.server_version,
        "instances": count,
    }


@app.post(f"{PREFIX}/virtual-machines")
def create_instance(payload: dict):
    name = payload.get("name")
    if not isinstance(name, str) or not name:
        return _error(400, "No name provided")
    with _lock:
        exists = name in _instances
    if exists:
        return _error(409, "Instance already exists")
    add_instance(
        name,
        status_code=get_settings().create_status_code,
        config=payload.get("config"),
        devices=payload.get("devices"),
    )
    with _lock:
        _instances[name]["source"] = dict(payload.get("source") or {})
        return _operation(
            "Creating instance",
            {"instances": [f"{PREFIX}/instances/{name}"]},
        )


@app.get(f"{PREFIX}/virtual-machines/{{name}}")
@app.get(f"{PREFIX}/instances/{{name}}")
def get_instance(name: str):
    with _lock:
        row = _instances.get(name)
        if not row:
            return _error(404, "Instance not found")
        return _sync(_instance_view(row))


@app.patch(f"{PREFIX}/virtual-machines/{{name}}")
def patch_instance(name: str, payload: dict):
    with _lock:
        row = _instances.get(name)
        if not row:
            return _error(404, "Instance not found")
        row["config"].update(payload.get("config") or {})
        for device_name, device in (payload.get("devices") or {}).items():
            row["devices"][device_name] = dict(device)
    return _sync({})


@app.put(f"{PREFIX}/instances/{{name}}")
def put_instance(name: str, payload: dict):
    with _lock:
        row = _instances.get(name)
        if not row:
            return _error(404, "Instance not found")
        if "config" in payload:
            row["config"] = dict(payload.get("config") or {})
        if "devices" in payload:
            row["devices"] = copy.deepcopy(payload.get("devices") or {})
        return _operation(
            "Updating instance", {"instances": [f"{PREFIX}/instances/{name}"]}
        )


@app.get(f"{PREFIX}/virtual-machines/{{name}}/state")
def instance_state(name: str):
    with _lock:
        row = _instances.get(name)
        if not row:
            return _error(404, "Instance not found")
        status_code = row["status_code"]
    return _sync(
        {
            "status": STATUS_NAMES.get(status_code, "Unknown"),
            "status_code": status_code,
        }
    )


@app.put(f"{PREFIX}/virtual-machines/{{name}}/state")
def change_state(name: str, payload: dict):
    action = payload.get("action")
    status_code = ACTION_STATUS_CODES.get(action) if isinstance(action, str) else None
    if status_code is None:
        return _error(400, f"Unknown action {action}")
    with _lock:
        row = _instances.get(name)
        if not row:
            return _error(404, "Instance not found")
        row["status_code"] = status_code
        return _operation(
            ACTION_DESCRIPTIONS[action],
            {"instances": [f"{PREFIX}/instances/{name}"]},
        )


@app.get(f"{PREFIX}/operations/{{op_id}}")
def get_operation(op_id: str):
    with _lock:
        record = _operations.get(op_id)
        if not record:
            return _error(404, "Operation not found")
        return _sync(dict(record))


@app.get(f"{PREFIX}/networks/{{bridge}}/leases")
def network_leases(bridge: str):
    with _lock:
        return _sync([dict(lease) for lease in _leases.get(bridge, [])])
