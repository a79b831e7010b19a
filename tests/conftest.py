from __future__ import annotations

from typing import Iterator

import pytest
from hypothesis import HealthCheck, settings

from infra.document_store import DocumentStore
from tests.ledger_helpers import new_ledger
from viaticos.protocol import BalanceProtocol

# Hypothesis puede volverse "flaky" por velocidad (sqlite en memoria + CPU load).
# Esto NO es un bug funcional: es un healthcheck de performance.
settings.register_profile(
    "viaticos_stable",
    suppress_health_check=[HealthCheck.too_slow],
    deadline=None,  # evita timeouts por variación de rendimiento
)

settings.load_profile("viaticos_stable")


@pytest.fixture
def store() -> Iterator[DocumentStore]:
    s = DocumentStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def ledger() -> Iterator[BalanceProtocol]:
    s, proto = new_ledger()
    yield proto
    s.close()
