"""
Flask configuration classes for routekit applications.

Environment-specific settings (Development, Testing, Production) are loaded
from environment variables via python-dotenv and applied with
``app.config.from_object``. Besides the usual Flask keys, the ``ROUTEKIT_*``
keys tune query parsing and content negotiation:

- ``ROUTEKIT_MATCH_ALL``: filter value that removes a parameter (default ``*``)
- ``ROUTEKIT_DEFAULT_OFFSET`` / ``ROUTEKIT_DEFAULT_LIMIT``: paging defaults
- ``ROUTEKIT_ORDER_MODE``: ``pipe`` (``order=a|desc,b``) or ``direction``
  (``order=a&direction=desc``)
- ``ROUTEKIT_STRICT_LOGICAL``: reject unsupported ``logical`` operators
- ``ROUTEKIT_XML_ROOT``: document element of XML responses
- ``ROUTEKIT_JSONP_CALLBACK``: query parameter naming a JSONP callback
  (empty disables JSONP)
"""

import logging
import os
from typing import List, Optional, Type

from dotenv import load_dotenv

# Load environment variables early
load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 'yes')


class BaseConfig:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv('SECRET_KEY', os.urandom(32).hex())

    APP_NAME = os.getenv('APP_NAME', 'routekit')
    FLASK_ENV = os.getenv('FLASK_ENV', 'development')

    JSON_SORT_KEYS = False

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json').lower()
    LOG_COLORS = _env_bool('LOG_COLORS', 'false')

    # Query parsing
    ROUTEKIT_MATCH_ALL = os.getenv('ROUTEKIT_MATCH_ALL', '*')
    ROUTEKIT_DEFAULT_OFFSET = int(os.getenv('ROUTEKIT_DEFAULT_OFFSET', '0'))
    ROUTEKIT_DEFAULT_LIMIT = int(os.getenv('ROUTEKIT_DEFAULT_LIMIT', '0'))
    ROUTEKIT_ORDER_MODE = os.getenv('ROUTEKIT_ORDER_MODE', 'pipe').lower()
    ROUTEKIT_STRICT_LOGICAL = _env_bool('ROUTEKIT_STRICT_LOGICAL', 'true')

    # Content negotiation
    ROUTEKIT_XML_ROOT = os.getenv('ROUTEKIT_XML_ROOT', 'root')
    ROUTEKIT_JSONP_CALLBACK = os.getenv('ROUTEKIT_JSONP_CALLBACK', 'callback')

    # Router defaults, merged under explicit router options
    ROUTEKIT_ROUTER_OPTIONS = {
        'request_id': _env_bool('ROUTEKIT_REQUEST_ID', 'true'),
        'ip': _env_bool('ROUTEKIT_RESOLVE_IP', 'true'),
        'response_time': _env_bool('ROUTEKIT_RESPONSE_TIME', 'true'),
        'log_requests': _env_bool('ROUTEKIT_LOG_REQUESTS', 'true'),
        'log_responses': _env_bool('ROUTEKIT_LOG_RESPONSES', 'true'),
        'log_errors': _env_bool('ROUTEKIT_LOG_ERRORS', 'true'),
    }

    # Flask-Talisman options; None leaves security headers off
    ROUTEKIT_SECURITY_HEADERS = None

    @classmethod
    def init_app(cls, app) -> None:
        app.json.sort_keys = cls.JSON_SORT_KEYS


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    TESTING = False
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG').upper()
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'console').lower()


class TestingConfig(BaseConfig):
    """Quiet, deterministic settings for the test suite."""

    TESTING = True
    DEBUG = False
    SECRET_KEY = 'test-secret-key'
    LOG_LEVEL = 'WARNING'
    LOG_FORMAT = 'console'

    ROUTEKIT_ROUTER_OPTIONS = {
        'request_id': True,
        'ip': True,
        'response_time': True,
        'log_requests': False,
        'log_responses': False,
        'log_errors': False,
    }


class ProductionConfig(BaseConfig):
    DEBUG = False
    TESTING = False

    ROUTEKIT_SECURITY_HEADERS = {
        'force_https': _env_bool('FORCE_HTTPS', 'true'),
        'strict_transport_security': True,
        'content_security_policy': {'default-src': "'none'"},
        'referrer_policy': 'no-referrer',
    }


config_map = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,

    'dev': DevelopmentConfig,
    'test': TestingConfig,
    'prod': ProductionConfig,
}


def get_config(environment: Optional[str] = None) -> Type[BaseConfig]:
    """
    Get configuration class for the specified environment.

    Args:
        environment: Target environment name (defaults to FLASK_ENV)

    Returns:
        Configuration class for the specified environment

    Raises:
        ValueError: If environment is not supported
    """
    if environment is None:
        environment = os.getenv('FLASK_ENV', 'development')

    environment = environment.lower()

    if environment not in config_map:
        raise ValueError(
            f"Unsupported environment '{environment}'. "
            f"Supported environments: {list(config_map.keys())}"
        )

    return config_map[environment]


def validate_configuration(config: BaseConfig) -> List[str]:
    """Return a list of configuration problems (empty if valid)."""
    issues = []

    if config.ROUTEKIT_ORDER_MODE not in ('pipe', 'direction'):
        issues.append(
            f"ROUTEKIT_ORDER_MODE must be 'pipe' or 'direction', got '{config.ROUTEKIT_ORDER_MODE}'"
        )
    if config.ROUTEKIT_DEFAULT_OFFSET < 0 or config.ROUTEKIT_DEFAULT_LIMIT < 0:
        issues.append("ROUTEKIT_DEFAULT_OFFSET and ROUTEKIT_DEFAULT_LIMIT must not be negative")
    if not config.ROUTEKIT_XML_ROOT:
        issues.append("ROUTEKIT_XML_ROOT must not be empty")

    if issues:
        logger.warning(
            "Configuration validation found issues",
            extra={'config_class': getattr(config, '__name__', type(config).__name__), 'issues': issues}
        )
    return issues


__all__ = [
    'BaseConfig',
    'DevelopmentConfig',
    'TestingConfig',
    'ProductionConfig',
    'config_map',
    'get_config',
    'validate_configuration',
]
