import pytest

from liquidity_relayer.config import parse_config
from liquidity_relayer.core.endpoints import EndpointRegistry
from liquidity_relayer.core.pipeline import RelayPipeline

from factories import FakeCircle, FakeGateway, FakeGuardian, config_data


@pytest.fixture
def config():
    return parse_config(config_data())


@pytest.fixture
def gateway(config):
    return FakeGateway(config)


@pytest.fixture
def guardian():
    return FakeGuardian()


@pytest.fixture
def circle():
    return FakeCircle()


@pytest.fixture
def pipeline(config, gateway, guardian, circle):
    relay = RelayPipeline(
        config=config,
        registry=EndpointRegistry.from_config(config),
        gateway=gateway,
        guardian=guardian,
        circle=circle,
    )
    yield relay
    relay.close()
