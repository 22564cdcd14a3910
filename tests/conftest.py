# tests/conftest.py
from __future__ import annotations

import pytest

from tradekernel.config import KernelConfig
from tradekernel.kernel import TradeKernel
from tradekernel.time import SimulatedClock

from tests.helpers import START, make_trade


@pytest.fixture
def clock():
    return SimulatedClock(START)


@pytest.fixture
def kernel_config(tmp_path):
    return KernelConfig.from_dict({
        "store": {"db_path": str(tmp_path / "trades.db")},
        "audit": {"journal_path": str(tmp_path / "audit" / "audit.ndjson")},
        "logging": {"log_dir": str(tmp_path / "logs")},
    })


@pytest.fixture
def build_kernel(kernel_config, clock):
    """Factory for kernels on the test database; all are closed at teardown."""
    built = []

    def _build(**overrides):
        config = kernel_config.model_copy(update=overrides) if overrides else kernel_config
        k = TradeKernel.from_config(config, clock=clock)
        built.append(k)
        return k

    yield _build
    for k in built:
        k.close()


@pytest.fixture
def kernel(build_kernel):
    return build_kernel()


@pytest.fixture
def trade(kernel):
    return make_trade(kernel)
