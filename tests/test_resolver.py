"""Tests for WSGI environ resolution."""

import threading
from http import HTTPStatus

import pytest

from routetree import ROUTE_ROUTING_ARGS_KEY, HTTPError, NotFoundError, RouteResolver, RouteTable, compile_routes


def handler():
    pass


def other_handler():
    pass


def test_resolve():
    routes = RouteTable()
    routes.add_route('GET', '/items/:id', handler, 'item')
    resolver = RouteResolver(routes.compile())

    environ = {'REQUEST_METHOD': 'GET', 'PATH_INFO': '/items/a%20b'}
    assert resolver(environ) is handler
    assert environ[ROUTE_ROUTING_ARGS_KEY] == ((), {'id': 'a b'})


def test_resolve_root():
    resolver = RouteResolver(compile_routes([('GET', '/', handler)]))

    for path_info in ('/', '', None):
        environ = {'REQUEST_METHOD': 'GET', 'PATH_INFO': path_info}
        assert resolver(environ) is handler
        assert environ[ROUTE_ROUTING_ARGS_KEY] == ((), {})


def test_not_found():
    resolver = RouteResolver(compile_routes([('GET', '/items', handler)]))

    environ = {'REQUEST_METHOD': 'GET', 'PATH_INFO': '/missing'}
    with pytest.raises(NotFoundError) as exc_info:
        resolver(environ)
    assert exc_info.value.args[0] == '/missing'
    assert exc_info.value.status == HTTPStatus.NOT_FOUND
    assert ROUTE_ROUTING_ARGS_KEY not in environ

    # wrong method is not found as well
    environ = {'REQUEST_METHOD': 'POST', 'PATH_INFO': '/items'}
    with pytest.raises(NotFoundError):
        resolver(environ)


def test_unsupported_method():
    resolver = RouteResolver(compile_routes([('ANY', '/items', handler)]))

    for method in ('PROPFIND', 'ANY'):
        environ = {'REQUEST_METHOD': method, 'PATH_INFO': '/items'}
        with pytest.raises(HTTPError) as exc_info:
            resolver(environ)
        assert exc_info.value.status == HTTPStatus.NOT_IMPLEMENTED
        assert exc_info.value.result == HTTPStatus.NOT_IMPLEMENTED.description


def test_reverse():
    resolver = RouteResolver(compile_routes([('GET', '/items/:id', handler, 'item')]))

    assert resolver.reverse_uri_for('item', {'id': 5, 'page': 2}).uri == '/items/5?page=2'


def test_reload():
    resolver = RouteResolver(compile_routes([('GET', '/items', handler)]))
    old = resolver.compiled

    resolver.reload([('GET', '/items', other_handler)])

    assert resolver.compiled is not old
    assert resolver({'REQUEST_METHOD': 'GET', 'PATH_INFO': '/items'}) is other_handler


def test_failed_reload_keeps_routes():
    resolver = RouteResolver(compile_routes([('GET', '/items', handler)]))

    with pytest.raises(ValueError):
        resolver.reload([('GET', '/files/:*/bad', other_handler)])

    assert resolver({'REQUEST_METHOD': 'GET', 'PATH_INFO': '/items'}) is handler


def test_concurrent_matching():
    routes = RouteTable()
    for i in range(50):
        routes.add_route('GET', f'/items/{i}/:name', handler)
    routes.add_route('GET', '/files/:*', other_handler)
    resolver = RouteResolver(routes.compile())

    errors = []

    def worker(n):
        for i in range(50):
            environ = {'REQUEST_METHOD': 'GET', 'PATH_INFO': f'/items/{i}/w{n}'}
            if resolver(environ) is not handler or environ[ROUTE_ROUTING_ARGS_KEY][1] != {'name': f'w{n}'}:
                errors.append((n, i))

            environ = {'REQUEST_METHOD': 'GET', 'PATH_INFO': f'/files/{n}/{i}'}
            if resolver(environ) is not other_handler or environ[ROUTE_ROUTING_ARGS_KEY][1] != {'*': f'{n}/{i}'}:
                errors.append((n, i))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
