import threading

import httpx

from instance_control.clients.http import lxd_request, lxd_wait
from instance_control.config import Settings


class LXDClient:
    """Connection to one LXD daemon.

    Owns the HTTP client and the lock that serializes read-merge-write cycles
    on instance device maps. Every mount handler for this daemon must share
    the same client object.
    """

    def __init__(
        self,
        base_url: str,
        *,
        project: str | None = None,
        client: httpx.Client | None = None,
        socket_path: str | None = None,
        request_timeout_sec: float = 30.0,
        poll_interval_sec: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.project = project
        self.poll_interval_sec = poll_interval_sec
        if client is None:
            transport = httpx.HTTPTransport(uds=socket_path) if socket_path else None
            client = httpx.Client(transport=transport, timeout=request_timeout_sec)
        self.client = client
        self.device_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls, settings: Settings, client: httpx.Client | None = None
    ) -> "LXDClient":
        return cls(
            settings.base_url,
            project=settings.project,
            client=client,
            socket_path=settings.socket_path,
            request_timeout_sec=settings.request_timeout_sec,
            poll_interval_sec=settings.poll_interval_sec,
        )

    def url_for(self, *parts: str) -> str:
        return "/".join([self.base_url, *(part.strip("/") for part in parts)])

    def request(
        self,
        method: str,
        url: str,
        payload: dict | None = None,
        *,
        timeout: float | None = None,
    ) -> dict:
        return lxd_request(
            self.client, method, url, payload, timeout=timeout, project=self.project
        )

    def wait(self, envelope: dict, timeout_sec: float) -> dict:
        return lxd_wait(
            self.client,
            self.base_url,
            envelope,
            timeout_sec,
            poll_interval_sec=self.poll_interval_sec,
            project=self.project,
        )

    def close(self) -> None:
        self.client.close()
