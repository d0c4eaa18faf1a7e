"""Pytest configuration and fixtures."""

import os
import pytest
from typing import AsyncGenerator, Callable, Dict, List
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set DATABASE_URL for tests BEFORE importing app.db
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

# Set master passphrase for tests
os.environ.setdefault("INFRADECK_ENCRYPTION_KEY", "test-master-passphrase")

# No background sync during tests
os.environ["INFRADECK_SYNC_ENABLED"] = "false"

import httpx  # noqa: E402
from sqlalchemy import event  # noqa: E402

from app.config import AppConfig  # noqa: E402
from app.db import Base, enable_sqlite_foreign_keys  # noqa: E402
from app.models import *  # noqa: E402,F401,F403  Import all models to ensure they're registered
from app.services.control_plane import create_proxmox_control_plane  # noqa: E402
from app.services.node_service import NodeService  # noqa: E402
from app.services.secret_store import SecretStore  # noqa: E402
from app.utils.encryption import EnvelopeCipher  # noqa: E402


@pytest.fixture(scope="function")
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine.sync_engine, "connect", enable_sqlite_foreign_keys)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
async def db(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session with automatic rollback."""
    async_session_maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def app_config() -> AppConfig:
    """Configuration with a fixed passphrase and short timeout."""
    return AppConfig(
        encryption_key="test-master-passphrase",
        http_timeout=2.0,
        sync_enabled=False,
    )


@pytest.fixture
def cipher(app_config) -> EnvelopeCipher:
    return EnvelopeCipher(app_config)


@pytest.fixture
def secret_store(db, cipher) -> SecretStore:
    return SecretStore(db, cipher)


class FakeProxmox:
    """Programmable stand-in for one or more Proxmox API hosts.

    Routes requests by host name; records every request it sees.

    Usage:
        fake = FakeProxmox()
        fake.add_node("pve1", resources=[{...}])
        transport = httpx.MockTransport(fake.handler)
    """

    def __init__(self) -> None:
        self.nodes: Dict[str, Dict] = {}
        self.requests: List[httpx.Request] = []

    def add_node(
        self,
        name: str,
        resources: List[Dict] | None = None,
        auth_status: int = 200,
        resources_status: int = 200,
        action_status: int = 200,
        console_status: int = 200,
        upid: str | None = None,
        timeout: bool = False,
    ) -> None:
        self.nodes[name] = {
            "resources": resources or [],
            "auth_status": auth_status,
            "resources_status": resources_status,
            "action_status": action_status,
            "console_status": console_status,
            "upid": upid or f"UPID:{name}:0000ABCD:00000001:65000000:qmreboot:100:root@pam:",
            "timeout": timeout,
        }

    def requests_to(self, host: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.host == host]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        node = self.nodes.get(request.url.host)
        if node is None:
            raise httpx.ConnectError("Name or service not known", request=request)
        if node["timeout"]:
            raise httpx.ReadTimeout("timed out", request=request)

        path = request.url.path.removeprefix("/api2/json")

        if path == "/access/ticket" and request.method == "POST":
            if node["auth_status"] != 200:
                return httpx.Response(node["auth_status"], json={"data": None})
            return httpx.Response(
                200,
                json={
                    "data": {
                        "ticket": f"PVE:root@pam:{request.url.host}-ticket",
                        "CSRFPreventionToken": f"{request.url.host}-csrf",
                        "username": "root@pam",
                    }
                },
            )

        expected_cookie = f"PVEAuthCookie=PVE:root@pam:{request.url.host}-ticket"
        if request.headers.get("Cookie") != expected_cookie:
            return httpx.Response(401, text="authentication failure")

        if path == "/cluster/resources" and request.method == "GET":
            if node["resources_status"] != 200:
                return httpx.Response(node["resources_status"], text="resource listing failed")
            return httpx.Response(200, json={"data": node["resources"]})

        if path == "/version" and request.method == "GET":
            return httpx.Response(200, json={"data": {"version": "8.2.4", "release": "8.2"}})

        if path.endswith("/status/current") and request.method == "GET":
            # /nodes/{node}/{qemu|lxc}/{vmid}/status/current
            _, _, _, kind, vmid, _, _ = path.split("/")
            known = any(
                entry.get("type") == kind and entry.get("vmid") == int(vmid)
                for entry in node["resources"]
            )
            if not known:
                return httpx.Response(500, text=f"Configuration file for {vmid} does not exist")
            return httpx.Response(200, json={"data": {"vmid": int(vmid), "status": "running"}})

        if path.endswith("/vncproxy") and request.method == "POST":
            if request.headers.get("CSRFPreventionToken") != f"{request.url.host}-csrf":
                return httpx.Response(401, text="permission denied - invalid csrf token")
            if node["console_status"] != 200:
                return httpx.Response(node["console_status"], text="unable to open console")
            vmid = path.split("/")[4]
            return httpx.Response(
                200,
                json={
                    "data": {
                        "port": "5900",
                        "ticket": f"PVEVNC:{request.url.host}-{vmid}",
                        "upid": f"UPID:{request.url.host}:00001234:vncproxy:{vmid}:root@pam:",
                        "user": "root@pam",
                    }
                },
            )

        if "/status/" in path and request.method == "POST":
            if request.headers.get("CSRFPreventionToken") != f"{request.url.host}-csrf":
                return httpx.Response(401, text="permission denied - invalid csrf token")
            if node["action_status"] != 200:
                return httpx.Response(node["action_status"], json={"errors": "internal error"})
            return httpx.Response(200, json={"data": node["upid"]})

        return httpx.Response(501, text=f"not implemented: {request.method} {path}")


@pytest.fixture
def fake_proxmox() -> FakeProxmox:
    return FakeProxmox()


@pytest.fixture
async def control_plane(secret_store, fake_proxmox):
    """Proxmox client wired to the fake API and the test secret store."""
    client = create_proxmox_control_plane(
        secret_store,
        timeout=2.0,
        transport=httpx.MockTransport(fake_proxmox.handler),
    )
    yield client
    await client.close()


@pytest.fixture
def make_node(db, cipher, app_config) -> Callable:
    """Factory fixture registering a node whose host name equals its name.

    Usage:
        node = await make_node("pve1")
    """
    async def _make_node(name: str, password: str = "s3cret-pw", **kwargs):
        service = NodeService(db, cipher, app_config)
        return await service.create(
            name=name,
            host=kwargs.pop("host", f"https://{name}:8006"),
            username=kwargs.pop("username", "root"),
            password=password,
            **kwargs,
        )

    return _make_node


@pytest.fixture
def sample_vm() -> Dict:
    """Cluster resource entry for a running VM on pve1."""
    return {
        "id": "qemu/100",
        "vmid": 100,
        "node": "pve1",
        "type": "qemu",
        "name": "web-01",
        "status": "running",
        "cpu": 0.5,
        "mem": 536870912,
        "maxmem": 1073741824,
        "disk": 0,
        "maxdisk": 34359738368,
        "uptime": 3600,
    }


@pytest.fixture
async def app():
    """Create FastAPI app for testing."""
    from app.main import app as application
    return application


@pytest.fixture
async def client(app, db, cipher, app_config, control_plane):
    """Create async test client using the test database and fake Proxmox API."""
    from httpx import AsyncClient, ASGITransport
    from app.db import get_db
    from app.dependencies import get_app_config, get_cipher, get_control_plane

    async def override_get_db():
        yield db

    async def override_get_control_plane():
        yield control_plane

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cipher] = lambda: cipher
    app.dependency_overrides[get_app_config] = lambda: app_config
    app.dependency_overrides[get_control_plane] = override_get_control_plane

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test", follow_redirects=True) as ac:
        yield ac

    app.dependency_overrides.clear()
