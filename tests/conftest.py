from __future__ import annotations

import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

BASE_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = BASE_DIR / "src"

sys.path.insert(0, str(SRC_DIR))

from tramcan_client.config import ClientConfig  # noqa: E402
from tramcan_client.controller import AuthController  # noqa: E402
from tramcan_client.http_client import HttpClient  # noqa: E402
from tramcan_client.session_store import SessionStore  # noqa: E402
from tramcan_client.storage import MemoryKeyValueStore  # noqa: E402

BASE_URL = "https://api.tramcan.test/api"


def ok(data: Any = None, message: str = "OK") -> dict[str, Any]:
    return {"success": True, "message": message, "data": data}


def fail(message: str) -> dict[str, Any]:
    return {"success": False, "message": message, "data": None}


def station(station_id: int, name: str | None = None) -> dict[str, Any]:
    return {
        "id": station_id,
        "maTramCan": f"TC{station_id:02d}",
        "tenTramCan": name or f"Tram can {station_id}",
        "diaChi": "KCN Song Than",
    }


KHACH_HANG = {"id": 11, "maKhachHang": "KH001", "tenKhachHang": "Cong ty Thep Viet"}


class FakeBackend:
    """Scripted stand-in for the REST backend, usable as an httpx.MockTransport handler.

    Each route holds a queue of answers; the last answer repeats once the queue drains.
    An answer is an httpx.Response, a JSON-able dict, or a callable/coroutine taking the request.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, *answers: Any) -> None:
        self.routes.setdefault((method.upper(), path), []).extend(answers)

    def calls(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if _route_path(request) == path]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, _route_path(request)))
        if not queue:
            return httpx.Response(404, json={"success": False, "message": "no route"})
        answer = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(answer):
            answer = answer(request)
            if hasattr(answer, "__await__"):
                answer = await answer
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, json=answer)


def _route_path(request: httpx.Request) -> str:
    path = request.url.path
    prefix = httpx.URL(BASE_URL).path
    return path[len(prefix):] if path.startswith(prefix) else path


def request_json(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content.decode("utf-8"))


@pytest.fixture()
def config() -> ClientConfig:
    return ClientConfig(env_name="test", api_base_url=BASE_URL, timeout_seconds=5.0)


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture()
def make_http(config: ClientConfig, backend: FakeBackend) -> Callable[..., HttpClient]:
    def factory(**kwargs: Any) -> HttpClient:
        transport = httpx.MockTransport(backend)
        client = httpx.AsyncClient(base_url=f"{config.api_base_url}/", transport=transport)
        return HttpClient(config, client=client, **kwargs)

    return factory


@pytest.fixture()
def make_controller(
    make_http: Callable[..., HttpClient],
    kv: MemoryKeyValueStore,
) -> Callable[[], AuthController]:
    def factory() -> AuthController:
        return AuthController(SessionStore(kv), make_http())

    return factory
