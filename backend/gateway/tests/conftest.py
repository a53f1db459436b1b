"""Shared fixtures for gateway tests."""

import pytest
from starlette.testclient import TestClient

from gateway.app import create_app
from gateway.settings import GatewaySettings
from gateway.tests.helpers.app import FakeModuleBackend
from identity.mail import MemoryEmailPublisher


@pytest.fixture
def mail():
    return MemoryEmailPublisher()


@pytest.fixture
def modules():
    return FakeModuleBackend()


@pytest.fixture
def gateway_settings():
    return GatewaySettings(app_url="https://app.example.com", cors_origins=["https://app.example.com"])


@pytest.fixture
def app(gateway_settings, auth_settings, mail, modules):
    return create_app(
        settings=gateway_settings,
        auth_settings=auth_settings,
        module_backend=modules,
        email_publisher=mail,
    )


@pytest.fixture
def client(app):
    # Session cookies are Secure, so the client must talk https for the jar to send them back.
    with TestClient(app, base_url="https://testserver") as client:
        yield client
