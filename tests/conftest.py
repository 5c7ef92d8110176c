"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages,
and provides the in-memory components most tests are built from.
"""

import sys
from pathlib import Path

# Insert local src directory at the beginning of sys.path
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of indexsync modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("indexsync"):
        del sys.modules[module_name]

import pytest  # noqa: E402

from indexsync.models import EntityType, UpdatePolicy  # noqa: E402
from indexsync.queue import InMemoryQueue  # noqa: E402
from indexsync.search import InMemorySearchClient  # noqa: E402
from indexsync.store import InMemoryRecordStore  # noqa: E402
from indexsync.sync import EntityRegistry, VersionManager  # noqa: E402


@pytest.fixture
def article_type() -> EntityType:
    return EntityType(
        name="Article",
        index_name="articles",
        doc_type="article",
        update_policy=UpdatePolicy.IMMEDIATE,
        mapping={"title": {"type": "text"}},
    )


@pytest.fixture
def registry(article_type: EntityType) -> EntityRegistry:
    return EntityRegistry([article_type])


@pytest.fixture
def client() -> InMemorySearchClient:
    return InMemorySearchClient()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def queue() -> InMemoryQueue:
    return InMemoryQueue()


@pytest.fixture
def versions(registry: EntityRegistry, client: InMemorySearchClient) -> VersionManager:
    return VersionManager(registry, client)
