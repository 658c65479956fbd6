import pytest

from signage.core.config import Config
from signage.device.agent import DeviceAgent
from signage.plugins.devices import service
from signage.plugins.devices.models import DeviceStatus


@pytest.fixture
def device_config(tmp_path, config_path):
    config = Config(config_path=str(config_path), watch=False)
    yield config
    config.cleanup()


def test_agent_registers_with_provided_name(client, device_config):
    names = []

    def provide():
        names.append(1)
        return "Reception"

    agent = DeviceAgent(device_config, display_id="disp1", name_provider=provide, session=client)
    try:
        state = agent.start()
        assert names == [1]
        assert state.status == DeviceStatus.PENDING
        record = service.list_devices("disp1")[0]
        assert record.device_name == "Reception"
        assert record.device_id == state.device_id

        # Already registered, so the provider is not asked again
        assert agent.ensure_registered() is False
        assert names == [1]
    finally:
        agent.stop()


def test_agent_without_name_stays_unregistered(client, device_config):
    agent = DeviceAgent(device_config, display_id="disp1", name_provider=lambda: None, session=client)
    try:
        state = agent.start()
        assert state.needs_registration is True
        assert service.list_devices("disp1") == []
    finally:
        agent.stop()


def test_agent_requires_display_id(device_config):
    with pytest.raises(ValueError):
        DeviceAgent(device_config)


def test_agent_keeps_identity_across_restarts(client, device_config):
    first = DeviceAgent(device_config, display_id="disp1", device_name="Hall", session=client)
    try:
        device_id = first.start().device_id
    finally:
        first.stop()

    second = DeviceAgent(device_config, display_id="disp1", device_name="Hall", session=client)
    try:
        assert second.start().device_id == device_id
        assert len(service.list_devices("disp1")) == 1
    finally:
        second.stop()
