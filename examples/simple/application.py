"""Examples for routetree."""

import json
from http import HTTPStatus
from wsgiref.simple_server import make_server

from routetree import ROUTE_ROUTING_ARGS_KEY, HTTPError, RouteResolver, RouteTable

routes = RouteTable()


# adding route with decorator, tag is additional key for reverse routing
@routes.get('/items/:item_id', tag='item')
def get_item(environ, item_id: str) -> dict:
    return {'item_id': item_id, 'self': resolver.reverse_uri_for('item', {'item_id': item_id}).uri}


# catch-all binds rest of the path
@routes.get('/files/:*')
def get_file(environ, **kwargs) -> dict:
    return {'path': kwargs['*']}


# any method, unless more specific route exists
@routes.any('/echo')
def echo(environ) -> dict:
    return {'method': environ['REQUEST_METHOD']}


def handler(environ) -> dict:
    return {'links': [resolver.reverse_uri_for(get_item, {'item_id': 1, 'verbose': 'yes'}).uri]}


# adding route without decorator
routes.add_route('GET', '/', handler)

resolver = RouteResolver(routes.compile())


def app(environ, start_response):
    try:
        endpoint = resolver(environ)
        status, result = HTTPStatus.OK, endpoint(environ, **environ[ROUTE_ROUTING_ARGS_KEY][1])
    except HTTPError as e:
        status, result = e.status, {'error': e.result}

    body = json.dumps(result).encode()
    start_response(f'{status} {status.phrase}',
                   [('Content-Type', 'application/json'), ('Content-Length', str(len(body)))])
    return body,


if __name__ == '__main__':
    port = 8000

    with make_server('', port, app) as httpd:
        print(f'Serving HTTP on port {port}...')

        # Respond to requests until process is killed
        httpd.serve_forever()
