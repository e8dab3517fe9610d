import os
import tempfile
from pathlib import Path

import pytest

_DB_DIR = Path(tempfile.mkdtemp(prefix="kidtimer-tests-"))
os.environ["KIDTIMER_SQLITE"] = str(_DB_DIR / "webapp.db")
os.environ["KIDTIMER_ACCESS_PIN"] = "2468"
# Countdown callbacks must never fire on their own during a test request.
os.environ["KIDTIMER_TICK_SECONDS"] = "3600"
os.environ["KIDTIMER_CHECKPOINT_TICKS"] = "0"
os.environ.setdefault("SESSION_SECRET", "test-session-secret")

from kidtimer.ops import StructuredLogger  # noqa: E402
from kidtimer.webapp.persistence import DocumentGateway, create_db_and_tables, make_engine  # noqa: E402


@pytest.fixture()
def gateway() -> DocumentGateway:
    target = make_engine("sqlite://")
    create_db_and_tables(target)
    return DocumentGateway(target, logger=StructuredLogger(component="test"))


@pytest.fixture()
def parent_id() -> str:
    return "parent-1"


@pytest.fixture()
def child(gateway, parent_id):
    return gateway.add_child(parent_id, "Ava", age=6)
