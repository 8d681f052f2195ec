"""
Unit tests for route declarations, controllers and the router.

Covers route normalization, pipeline composition order, duplicate and invalid
route handling, Flask rule generation and client address resolution.
"""

from types import SimpleNamespace
from unittest.mock import patch

import pytest
from flask import Flask
from prometheus_client import REGISTRY

from routekit.pipeline.controller import Controller
from routekit.pipeline.router import Router, resolve_ipv4
from routekit.pipeline.routes import HttpMethod, RouteSpec, to_flask_rule
from routekit.utils.exceptions import ApiError, InvalidFilterError
from tests.fixtures.controllers import ShadowController, WidgetController, route_after, route_before


def noop(ctx):
    pass


class TestRouteSpec:

    def test_normalizes_declaration(self):
        route = RouteSpec.from_mapping({
            'path': '/Users/:id',
            'method': 'patch',
            'action': noop,
            'blacklist': ['password'],
            'middleware': noop,
        })

        assert route.path == '/users/:id'
        assert route.method is HttpMethod.PATCH
        assert route.blacklist == frozenset({'password'})
        assert route.before == (noop,)
        assert route.rule == '/users/<id>'
        assert route.key == (HttpMethod.PATCH, '/users/:id')

    def test_method_defaults_to_get(self):
        assert RouteSpec.from_mapping({'path': '/x', 'action': noop}).method is HttpMethod.GET

    def test_direct_construction_matches_mapping(self):
        direct = RouteSpec('/x', noop, method=None)

        assert direct.method is HttpMethod.GET
        assert direct.is_valid
        assert RouteSpec('/x', noop, method='post').method is HttpMethod.POST
        assert not RouteSpec('/x', noop, method='TRACE').is_valid

    @pytest.mark.parametrize('declared', [
        {'path': None, 'action': noop},
        {'path': 42, 'action': noop},
        {'path': '/x', 'action': 'not callable'},
        {'path': '/x', 'action': noop, 'method': 'TRACE'},
    ])
    def test_invalid_routes(self, declared):
        assert not RouteSpec.from_mapping(declared).is_valid

    def test_all_expands_to_every_method(self):
        assert HttpMethod.ALL.flask_methods == ['GET', 'POST', 'PUT', 'PATCH', 'DELETE']

    @pytest.mark.parametrize('path, rule', [
        ('/users/:id', '/users/<id>'),
        ('users/:user_id/posts/:post', '/users/<user_id>/posts/<post>'),
        ('/', '/'),
    ])
    def test_to_flask_rule(self, path, rule):
        assert to_flask_rule(path) == rule


class TestController:

    def test_string_actions_resolve_to_methods(self, widget_controller):
        route = next(route for route in widget_controller.routes if route.path == '/conflict')

        assert route.action == widget_controller.conflict

    def test_unresolvable_action_is_kept_invalid(self, widget_controller):
        route = next(route for route in widget_controller.routes if route.path == '/missing-action')

        assert not route.is_valid

    def test_throw_error(self):
        with pytest.raises(ApiError) as exc_info:
            Controller().throw_error('Nope', 403)

        assert exc_info.value.status_code == 403
        assert exc_info.value.message == 'Nope'

    def test_default_throw_error_status(self):
        with pytest.raises(ApiError) as exc_info:
            Controller().throw_error('Nope')

        assert exc_info.value.status_code == 500

    def test_query_params_are_frozen(self, widget_controller):
        assert widget_controller.param_schema['legacy'] is None
        assert len(widget_controller.param_schema) == 6

    def test_logical_is_validated_without_declared_params(self, bare_app):
        ctx = SimpleNamespace(query={'logical': 'bogus'})

        with bare_app.app_context():
            with pytest.raises(InvalidFilterError):
                Controller().parse_query_params(ctx)


class TestComposition:

    def test_stage_order(self, widget_controller):
        router = Router([widget_controller])
        route = next(route for route in widget_controller.routes if route.path == '/traced')

        stages = [stage.func for stage in router.compose(widget_controller, route)]

        assert stages[:4] == widget_controller.begin
        assert stages[4:7] == [widget_controller.trace_pre, route_before, widget_controller.trace_before]
        assert stages[7].__name__ == 'handler'
        assert stages[8:10] == [widget_controller.trace_after, route_after]
        assert stages[10:] == widget_controller.end

    def test_end_stage_marks_error_response(self, widget_controller):
        router = Router([widget_controller])
        route = widget_controller.routes[0]

        flags = [stage.handles_errors for stage in router.compose(widget_controller, route)[-3:]]

        assert flags == [False, True, False]


class TestRouter:

    def test_first_registration_wins(self):
        router = Router([WidgetController(), ShadowController()])
        router.add_controller_routes()

        keys = [(route.method, route.path) for route in router.routes]

        assert keys.count(('GET', '/widgets')) == 1
        assert len(keys) == len(set(keys))
        assert ('GET', '/recovered') in keys

    def test_duplicate_adds_exactly_one_route(self):
        controller = Controller()
        router = Router([controller])

        assert router.add_route(controller, {'method': 'GET', 'path': '/dup', 'action': noop}) is True
        assert router.add_route(controller, {'method': 'GET', 'path': '/DUP', 'action': noop}) is False
        assert router.add_route(controller, {'method': 'POST', 'path': '/dup', 'action': noop}) is True

        assert len(router.routes) == 2

    def test_all_after_get_connects_remaining_methods(self):
        controller = Controller()
        router = Router([controller])

        def get_both(ctx):
            ctx.data = {'who': 'get'}

        def all_both(ctx):
            ctx.data = {'who': 'all'}

        router.add_route(controller, {'method': 'GET', 'path': '/both', 'action': get_both})
        with patch('routekit.pipeline.router.logger') as logger:
            assert router.add_route(controller, {'method': 'ALL', 'path': '/both', 'action': all_both}) is True

        logger.warning.assert_called_once()
        assert logger.warning.call_args.kwargs['skipped'] == ['GET']

        app = Flask(__name__)
        router.init_app(app)
        client = app.test_client()

        assert client.get('/both').get_json()['data'] == {'who': 'get'}
        assert client.post('/both').get_json()['data'] == {'who': 'all'}
        assert client.delete('/both').get_json()['data'] == {'who': 'all'}

    def test_get_after_all_is_a_duplicate(self):
        controller = Controller()
        router = Router([controller], name='overlap')
        labels = {'router': 'overlap', 'reason': 'duplicate'}
        before = REGISTRY.get_sample_value('routekit_routes_skipped_total', labels) or 0

        def all_both(ctx):
            ctx.data = {'who': 'all'}

        def get_both(ctx):
            ctx.data = {'who': 'get'}

        router.add_route(controller, {'method': 'ALL', 'path': '/both', 'action': all_both})
        with patch('routekit.pipeline.router.logger') as logger:
            assert router.add_route(controller, {'method': 'GET', 'path': '/both', 'action': get_both}) is False
            assert router.add_route(controller, {'method': 'ALL', 'path': '/both', 'action': get_both}) is False

        assert [call.args[0] for call in logger.warning.call_args_list] == ['Skipping duplicate route'] * 2
        assert REGISTRY.get_sample_value('routekit_routes_skipped_total', labels) == before + 2
        assert [(route.method, route.path) for route in router.routes] == [('ALL', '/both')]

        app = Flask(__name__)
        router.init_app(app)

        assert app.test_client().get('/both').get_json()['data'] == {'who': 'all'}

    def test_skips_are_logged_and_counted(self):
        controller = Controller()
        router = Router([controller], name='counted')
        labels = {'router': 'counted', 'reason': 'duplicate'}
        before = REGISTRY.get_sample_value('routekit_routes_skipped_total', labels) or 0

        with patch('routekit.pipeline.router.logger') as logger:
            router.add_route(controller, {'path': '/a', 'action': noop})
            router.add_route(controller, {'path': '/a', 'action': noop})
            router.add_route(controller, {'path': None, 'action': noop})

        assert REGISTRY.get_sample_value('routekit_routes_skipped_total', labels) == before + 1
        warnings = [call.args[0] for call in logger.warning.call_args_list]
        assert warnings == ['Skipping duplicate route', 'Skipping invalid route']

    def test_endpoint_names_are_unique(self):
        router = Router([WidgetController()])
        router.add_controller_routes()

        endpoints = [route.endpoint for route in router.routes]

        assert len(endpoints) == len(set(endpoints))
        assert all('.' not in endpoint for endpoint in endpoints)

    def test_init_app_registers_blueprint(self):
        app = Flask(__name__)
        router = Router([WidgetController()], url_prefix='/v1', name='widgets')

        router.init_app(app)

        assert 'widgets' in app.blueprints
        assert app.extensions['routekit'] == [router]
        rules = {rule.rule for rule in app.url_map.iter_rules()}
        assert {'/v1/widgets', '/v1/widgets.json', '/v1/widgets.xml', '/v1/widgets/<id>'} <= rules

    def test_config_options_merge_under_explicit_options(self):
        app = Flask(__name__)
        app.config['ROUTEKIT_ROUTER_OPTIONS'] = {'request_id': True, 'ip': True}
        router = Router([], options={'ip': False})

        router.init_app(app)

        assert router.options == {'request_id': True, 'ip': False}

    def test_security_headers_apply_talisman(self):
        app = Flask(__name__)
        router = Router([], options={'security_headers': {'force_https': False}})

        with patch('routekit.pipeline.router.Talisman') as talisman:
            router.init_app(app)

        talisman.assert_called_once_with(app, force_https=False)


class TestResolveIpv4:

    @pytest.mark.parametrize('address, expected', [
        ('127.0.0.1', '127.0.0.1'),
        ('::ffff:10.0.0.5', '10.0.0.5'),
        ('2001:db8::1', None),
        ('not an address', None),
        (None, None),
    ])
    def test_resolution(self, address, expected):
        assert resolve_ipv4(address) == expected
