import os
import sys
from pathlib import Path

import pytest

# Keep the module-level engine away from the working directory's database.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DB_RETRY_BASE_DELAY", "0")
os.environ.setdefault("DB_RETRY_JITTER", "0")

# Add the backend directory so `erp_logistics` imports resolve during tests
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.append(str(BACKEND_DIR))

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from erp_logistics.core.concurrency import KeyedLocks  # noqa: E402
from erp_logistics.core.db import create_all, create_db_engine, create_session_factory  # noqa: E402
from erp_logistics.services.delivery_order_engine import DeliveryOrderEngine  # noqa: E402
from erp_logistics.services.delivery_orders import DeliveryOrderService  # noqa: E402
from erp_logistics.services.seed import seed_demo_data  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'logistics.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
async def seeded(session_factory):
    await seed_demo_data(session_factory)
    return session_factory


@pytest.fixture
def lock_registry():
    return KeyedLocks()


@pytest.fixture
def do_engine(seeded, lock_registry):
    return DeliveryOrderEngine(seeded, lock_registry)


@pytest.fixture
def service(seeded, do_engine):
    return DeliveryOrderService(seeded, engine=do_engine)
