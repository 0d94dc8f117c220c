"""
Shared fixtures.
"""

import pytest

from factories import FakeMinter, make_service, qualifying_chain
from mintrelay_api.ledger import IdempotencyLedger, MemoryLedgerBackend


@pytest.fixture
def chain():
    return qualifying_chain()


@pytest.fixture
def minter():
    return FakeMinter()


@pytest.fixture
def ledger():
    return IdempotencyLedger(MemoryLedgerBackend())


@pytest.fixture
def service(chain, minter, ledger):
    return make_service(chain=chain, minter=minter, ledger=ledger)
