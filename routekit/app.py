"""
Flask application factory.

Builds a Flask application with routekit configuration, structured logging,
envelope-rendering error handlers and a router connecting the given
controllers::

    app = create_app('production', controllers=[UserController(db=db)],
                     router_options={'url_prefix': '/api/v1', 'db': db})
"""

from typing import Any, Iterable, Mapping, Optional, Union

import structlog
from flask import Flask

from routekit.config.settings import get_config, validate_configuration
from routekit.monitoring.logging import setup_structured_logging
from routekit.pipeline.controller import Controller
from routekit.pipeline.router import Router
from routekit.utils.exceptions import register_error_handlers

logger = structlog.get_logger(__name__)

# Router constructor arguments that may be passed through ``router_options``
_ROUTER_ARGUMENTS = ('name', 'url_prefix')


def create_app(
    config_name: Optional[str] = None,
    controllers: Union[Iterable[Controller], Mapping[str, Controller], None] = None,
    router_options: Optional[Mapping[str, Any]] = None,
    import_name: str = 'routekit',
    **config_overrides: Any
) -> Flask:
    """
    Create a Flask application wired for routekit controllers.

    Args:
        config_name: Environment configuration name (development, testing, production)
        controllers: Controllers whose routes are connected by the router
        router_options: Router options; ``name`` and ``url_prefix`` configure the blueprint
        import_name: Flask import name
        **config_overrides: Additional configuration values

    Returns:
        Configured Flask application; the router is available as
        ``app.extensions['routekit'][0]``

    Raises:
        ValueError: If the environment name is not supported
    """
    config_class = get_config(config_name)

    app = Flask(import_name)
    app.config.from_object(config_class)
    app.config.update(config_overrides)
    config_class.init_app(app)

    setup_structured_logging(app)

    for issue in validate_configuration(config_class):
        logger.warning("Configuration issue", issue=issue)

    register_error_handlers(app)

    options = dict(router_options or {})
    router_arguments = {key: options.pop(key) for key in _ROUTER_ARGUMENTS if key in options}
    router = Router(controllers, options=options, **router_arguments)
    router.init_app(app)

    logger.info(
        "Application created",
        config=config_class.__name__,
        controllers=len(router.controllers),
        routes=len(router.routes)
    )
    return app
