import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio
from bson import ObjectId
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from academyhub.api import search as search_api
from academyhub.domain.search.capabilities import reset_prober
from academyhub.infra.memory_store import MemoryCollectionStore
from academyhub.infra.store import set_store
from academyhub.main import app
from academyhub.settings import settings

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from academyhub.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def memory_store():
	store = MemoryCollectionStore()
	set_store(store)
	reset_prober()
	search_api.get_service().reset_caches()
	try:
		yield store
	finally:
		set_store(None)
		reset_prober()


@pytest.fixture(autouse=True)
def force_test_settings():
	original_env = settings.environment
	original_enrichment = settings.search_enrichment_enabled
	original_rate = settings.search_rate_limit_per_minute
	settings.environment = "dev"
	settings.search_enrichment_enabled = False
	settings.search_rate_limit_per_minute = 1000
	try:
		yield
	finally:
		settings.environment = original_env
		settings.search_enrichment_enabled = original_enrichment
		settings.search_rate_limit_per_minute = original_rate


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
	await search_api.get_service().flush()


def _at(days: int) -> datetime:
	return BASE_TIME + timedelta(days=days)


async def seed_campus_data(store: MemoryCollectionStore) -> SimpleNamespace:
	"""Two universities with a handful of users, posts, notes and reviews."""

	ids = SimpleNamespace(
		ivy=ObjectId(),
		maple=ObjectId(),
		closed=ObjectId(),
		alice=ObjectId(),
		bob=ObjectId(),
		ghost=ObjectId(),
		orientation=ObjectId(),
		chem_question=ObjectId(),
		reply=ObjectId(),
		removed=ObjectId(),
		admissions=ObjectId(),
		organic=ObjectId(),
		private_note=ObjectId(),
		campus_review=ObjectId(),
		chem_review=ObjectId(),
	)
	await store.seed(
		"universities",
		[
			{
				"_id": ids.ivy,
				"name": "Ivy State University",
				"city": "Albany",
				"state": "NY",
				"country": "United States",
				"description": "Public research university in upstate New York",
				"emailDomains": ["ivystate.edu"],
				"website": "https://www.ivystate.edu",
				"averageRating": 4.2,
				"reviewCount": 12,
				"studentCount": 20000,
				"isActive": True,
				"createdAt": _at(0),
			},
			{
				"_id": ids.maple,
				"name": "Maple Ridge College",
				"city": "Toronto",
				"state": "ON",
				"country": "Canada",
				"description": "Small liberal arts college",
				"emailDomains": ["mapleridge.ca"],
				"averageRating": 3.8,
				"reviewCount": 5,
				"studentCount": 3000,
				"isActive": True,
				"createdAt": _at(1),
			},
			{
				"_id": ids.closed,
				"name": "Ivy Closed Institute",
				"city": "Boston",
				"state": "MA",
				"country": "United States",
				"isActive": False,
				"createdAt": _at(2),
			},
		],
	)
	await store.seed(
		"users",
		[
			{
				"_id": ids.alice,
				"username": "alice_ivy",
				"fullName": "Alice Chen",
				"bio": "Biology student",
				"university": ids.ivy,
				"isVerifiedStudent": True,
				"email": "alice@ivystate.edu",
				"createdAt": _at(3),
			},
			{
				"_id": ids.bob,
				"username": "bob",
				"fullName": "Bob Stone",
				"bio": "Loves chemistry",
				"university": ids.maple,
				"createdAt": _at(4),
			},
			{
				"_id": ids.ghost,
				"username": "ivy_ghost",
				"fullName": "Deleted Person",
				"isDeleted": True,
				"createdAt": _at(5),
			},
		],
	)
	await store.seed(
		"posts",
		[
			{
				"_id": ids.orientation,
				"title": "Ivy orientation tips",
				"content": "Everything I wish I knew before orientation week",
				"tags": ["ivy", "orientation"],
				"category": "general",
				"university": ids.ivy,
				"user": ids.alice,
				"likesCount": 10,
				"viewsCount": 120,
				"replyCount": 1,
				"isQuestion": False,
				"isAnswered": False,
				"status": "active",
				"parentPost": None,
				"createdAt": _at(6),
			},
			{
				"_id": ids.chem_question,
				"title": "Best chemistry study spots?",
				"content": "Looking for quiet places to study chemistry",
				"tags": ["chemistry", "study"],
				"category": "question",
				"university": ids.maple,
				"user": ids.bob,
				"likesCount": 2,
				"viewsCount": 40,
				"isQuestion": True,
				"isAnswered": False,
				"status": "active",
				"parentPost": None,
				"createdAt": _at(7),
			},
			{
				"_id": ids.reply,
				"title": "Re: Ivy orientation tips",
				"content": "Thanks, this helped with orientation",
				"tags": ["ivy"],
				"university": ids.ivy,
				"user": ids.bob,
				"status": "active",
				"parentPost": ids.orientation,
				"createdAt": _at(8),
			},
			{
				"_id": ids.removed,
				"title": "Ivy housing rant",
				"content": "Removed by moderators",
				"tags": ["ivy"],
				"university": ids.ivy,
				"user": ids.bob,
				"status": "deleted",
				"parentPost": None,
				"createdAt": _at(9),
			},
		],
	)
	await store.seed(
		"notes",
		[
			{
				"_id": ids.admissions,
				"title": "Admissions essay guide",
				"description": "How I approached my application essays",
				"subject": "Ivy League Admissions",
				"course": "ADM 101",
				"noteType": "lecture",
				"tags": ["admissions"],
				"university": ids.ivy,
				"author": ids.alice,
				"downloadCount": 30,
				"likesCount": 4,
				"status": "active",
				"isPublic": True,
				"createdAt": _at(10),
			},
			{
				"_id": ids.organic,
				"title": "Organic chemistry summary",
				"description": "Reaction mechanisms cheat sheet",
				"subject": "Chemistry",
				"course": "CHEM 201",
				"noteType": "summary",
				"tags": ["chemistry"],
				"university": ids.maple,
				"author": ids.bob,
				"downloadCount": 50,
				"likesCount": 9,
				"status": "active",
				"isPublic": True,
				"createdAt": _at(11),
			},
			{
				"_id": ids.private_note,
				"title": "Chemistry private notes",
				"subject": "Chemistry",
				"tags": ["chemistry"],
				"university": ids.maple,
				"author": ids.bob,
				"status": "active",
				"isPublic": False,
				"createdAt": _at(12),
			},
		],
	)
	await store.seed(
		"reviews",
		[
			{
				"_id": ids.campus_review,
				"title": "Great campus life",
				"content": "Ivy State has great campus events",
				"overallRating": 5,
				"helpfulCount": 3,
				"university": ids.ivy,
				"author": ids.alice,
				"isAnonymous": False,
				"status": "active",
				"createdAt": _at(13),
			},
			{
				"_id": ids.chem_review,
				"title": "Average chemistry department",
				"content": "Labs are crowded but teaching is solid",
				"overallRating": 3,
				"helpfulCount": 8,
				"university": ids.maple,
				"author": ids.bob,
				"isAnonymous": True,
				"status": "active",
				"createdAt": _at(14),
			},
		],
	)
	return ids


@pytest_asyncio.fixture
async def campus(memory_store):
	return await seed_campus_data(memory_store)


@pytest_asyncio.fixture
async def indexed_campus(memory_store):
	from academyhub.domain.search.indexes import IndexProvisioner

	ids = await seed_campus_data(memory_store)
	await IndexProvisioner(memory_store).ensure_all()
	return ids
