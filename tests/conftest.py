import pytest

from fakes import FakeWebSocketApp


@pytest.fixture(autouse=True)
def reset_fake_websocket_apps():
    FakeWebSocketApp.instances.clear()
    yield
    FakeWebSocketApp.instances.clear()
