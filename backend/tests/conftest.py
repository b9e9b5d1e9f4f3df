import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from chatline.domain.chat import repo as message_repo
from chatline.domain.groups import repo as group_repo
from chatline.domain.identity import repo as user_repo
from chatline.domain.media import LocalMediaStore, get_store, set_store
from chatline.domain.presence import get_registry
from chatline.domain.presence import sockets as presence_sockets
from chatline.domain.presence.calls import get_call_registry
from chatline.domain.status import repo as status_repo
from chatline.infra import postgres
from chatline.main import app
from chatline.settings import settings

_REPOSITORY_MODULES = (user_repo, group_repo, status_repo, message_repo)


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	try:
		asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
	except Exception:
		# Non-fatal; proceed with default policy
		pass


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from chatline.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)
	# Repositories see no pool and fall back to their in-memory stores.
	for module in _REPOSITORY_MODULES:
		repository = module.get_repository()
		monkeypatch.setattr(repository, "_pool_checked", True)
		monkeypatch.setattr(repository, "_pool", None)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Most API tests authenticate via the X-User-Id header, which is only accepted in dev mode."""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest_asyncio.fixture(autouse=True)
async def reset_state():
	for module in _REPOSITORY_MODULES:
		module.reset_memory_store()
	await get_registry().clear()
	await get_call_registry().clear()
	original_namespace = presence_sockets.get_namespace()
	presence_sockets.set_namespace(None)
	try:
		yield
	finally:
		presence_sockets.set_namespace(original_namespace)
		await get_registry().clear()
		await get_call_registry().clear()


@pytest.fixture
def media_store(tmp_path):
	original = get_store()
	store = LocalMediaStore(tmp_path / "uploads", "http://testserver/uploads")
	set_store(store)
	try:
		yield store
	finally:
		set_store(original)


@pytest_asyncio.fixture
async def make_user():
	repo = user_repo.get_repository()

	async def _make(username: str, *, password_hash: str = "not-a-hash"):
		return await repo.create(username, f"{username}@example.com", password_hash)

	return _make


@pytest_asyncio.fixture
async def befriend():
	repo = user_repo.get_repository()

	async def _befriend(a, b) -> None:
		await repo.add_relation(a.id, user_repo.Relation.FRIENDS, b.id)
		await repo.add_relation(b.id, user_repo.Relation.FRIENDS, a.id)

	return _befriend


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
