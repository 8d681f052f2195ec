"""
Global pytest configuration and fixtures.

Provides a Flask application built by the routekit factory with the testing
configuration and the sample controllers from ``tests.fixtures.controllers``,
a test client and a request-context helper for unit tests of pipeline parts
that need ``current_app``.

Fixtures:
- ``widget_controller`` / ``shadow_controller``: controller instances
- ``app``: application with both controllers connected under ``/api``
- ``client``: Flask test client
- ``request_ctx``: factory pushing a test request context
"""

from contextlib import contextmanager
from unittest.mock import MagicMock

import pytest

from routekit import create_app
from tests.fixtures.controllers import ShadowController, WidgetController


@pytest.fixture
def widget_controller():
    return WidgetController()


@pytest.fixture
def shadow_controller():
    return ShadowController()


@pytest.fixture
def storage():
    """Stand-in storage handle attached to every request context."""
    return MagicMock(name='storage')


@pytest.fixture
def app(widget_controller, shadow_controller, storage):
    """
    Function-scoped Flask application for testing.

    Controllers are registered in order, so ``WidgetController`` owns every
    route it shares with ``ShadowController``.
    """
    application = create_app(
        'testing',
        controllers=[widget_controller, shadow_controller],
        router_options={'url_prefix': '/api', 'db': storage},
    )
    return application


@pytest.fixture
def client(app):
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def router(app):
    return app.extensions['routekit'][0]


@pytest.fixture
def bare_app():
    """Application without controllers, for request-context based unit tests."""
    return create_app('testing')


@pytest.fixture
def request_ctx(bare_app):
    """
    Factory pushing a test request context on the bare application.

    Usage::

        with request_ctx('/things.xml', headers={'Accept': 'text/plain'}):
            ...
    """
    @contextmanager
    def factory(path='/', **kwargs):
        with bare_app.test_request_context(path, **kwargs) as ctx:
            yield ctx

    return factory
