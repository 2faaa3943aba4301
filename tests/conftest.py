from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from finzn.db import LedgerStore  # noqa: E402
from finzn.ledger import Ledger  # noqa: E402

TODAY = date(2024, 5, 15)


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def ledger() -> Ledger:
    """Ledger without persistence, pinned to a fixed date."""
    return Ledger(today=TODAY)


@pytest.fixture
def store(tmp_path) -> LedgerStore:
    store = LedgerStore(db_path=tmp_path / 'finzn.db', user_id='tester')
    store.init_db()
    return store


@pytest.fixture
def stored_ledger(store) -> Ledger:
    ledger = Ledger(store=store, today=TODAY)
    ledger.load()
    return ledger
