import os

# The API module reads these at import time
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("API_KEY", None)

import pytest

from dns_module.config import DiagnosticsConfig
from zone_gateway import ZoneGateway


@pytest.fixture
def config():
    return DiagnosticsConfig()


@pytest.fixture
def make_gateway(config):
    def _make(zone=None, **kwargs):
        kwargs.setdefault("config", config)
        return ZoneGateway(zone, **kwargs)
    return _make
