"""
Data-driven request router with reverse routing.

Routes are declared as (method, template, handler[, tag]) entries and compiled
into an immutable route tree plus a table of reverse functions.

License: MIT
"""

import logging
import types
from dataclasses import dataclass
from enum import Enum
from http import HTTPStatus
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote, unquote, urlencode

__all__ = [
    'ANONYMOUS_WILDCARD_KEY', 'ROUTE_ROUTING_ARGS_KEY',
    'CatchAll', 'Capture', 'CompileOptions', 'CompiledRoutes', 'HTTPError', 'Literal', 'Match', 'Method',
    'MissingParameterError', 'NotFoundError', 'ReverseFunction', 'ReverseResult', 'Route',
    'RouteConfigurationError', 'RouteNode', 'RouteResolver', 'RouteTable', 'UnknownRouteError',
    'compile_routes', 'match', 'reverse_uri_for', 'tokenize',
]

ANONYMOUS_WILDCARD_KEY = 'splat'
ROUTE_ROUTING_ARGS_KEY = 'wsgiorg.routing_args'

_WSGI_PATH_INFO_HEADER = 'PATH_INFO'
_WSGI_REQUEST_METHOD_HEADER = 'REQUEST_METHOD'

_PATH_SEPARATOR = '/'
_BARE_WILDCARD = '*'
_QUERY_STRING_PREFIX = '?'

_NO_POSITIONAL_ARGS = ()

_logger = logging.getLogger('routetree')


class HTTPError(Exception):
    def __init__(self, status: HTTPStatus, result=None) -> None:
        super().__init__(status)
        self.status = status
        self.result = status.description if result is None else result


class NotFoundError(HTTPError):
    def __init__(self, path_info: str) -> None:
        super().__init__(HTTPStatus.NOT_FOUND)
        self.args = (path_info,)
        self.path_info = path_info


class RouteConfigurationError(ValueError):
    """Malformed route declaration, reported at compile time."""


class MissingParameterError(KeyError):
    """Reverse generation was called without all template parameters."""

    def __init__(self, template: str, missing: Iterable[str]) -> None:
        self.template = template
        self.missing = frozenset(missing)
        super().__init__(f'{template}: missing parameter(s) {", ".join(sorted(self.missing))}')

    def __str__(self) -> str:
        # KeyError quotes its argument
        return self.args[0]


class UnknownRouteError(LookupError):
    pass


class Method(str, Enum):
    GET = 'GET'
    HEAD = 'HEAD'
    POST = 'POST'
    PUT = 'PUT'
    DELETE = 'DELETE'
    PATCH = 'PATCH'
    OPTIONS = 'OPTIONS'
    TRACE = 'TRACE'
    CONNECT = 'CONNECT'

    # route declarations only, never a request method
    ANY = 'ANY'

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str) and value != value.upper():
            return cls(value.upper())
        return None


@dataclass(frozen=True)
class Route:
    method: Union[Method, str]
    template: str
    handler: Any
    tag: Any = None


@dataclass(frozen=True)
class Literal:
    text: str

    def render(self, data: Mapping[str, Any]) -> str:
        return self.text


@dataclass(frozen=True)
class Capture:
    name: str

    def render(self, data: Mapping[str, Any]) -> str:
        return quote(str(data[self.name]), safe='')


@dataclass(frozen=True)
class CatchAll:
    name: str

    def render(self, data: Mapping[str, Any]) -> str:
        # remainder of the path, separators are part of the value
        return quote(str(data[self.name]), safe=_PATH_SEPARATOR)


Segment = Union[Literal, Capture, CatchAll]


@dataclass(frozen=True)
class Match:
    handler: Any
    params: Dict[str, str]


@dataclass(frozen=True)
class ReverseResult:
    path: str
    query_string: Optional[str] = None

    @property
    def uri(self) -> str:
        return self.path + (self.query_string or '')


@dataclass
class CompileOptions:
    reverse_only_for_tagged_routes: bool = False
    capture_marker: str = ':'
    catch_all_name: str = '*'
    logger: Union[logging.Logger, logging.LoggerAdapter] = _logger


class RouteNode:
    __slots__ = ('literals', 'captures', 'catch_alls', 'handlers', 'any_handler')

    def __init__(self) -> None:
        self.literals: Dict[str, 'RouteNode'] = {}
        self.captures: Dict[str, 'RouteNode'] = {}
        # usually one entry, `:*` and bare `*` bind different names
        self.catch_alls: Dict[str, 'RouteNode'] = {}
        self.handlers: Dict[Method, Any] = {}
        self.any_handler: Any = None

    def child(self, segment: Segment) -> 'RouteNode':
        if isinstance(segment, Literal):
            children = self.literals
            key = segment.text
        elif isinstance(segment, Capture):
            children = self.captures
            key = segment.name
        else:
            children = self.catch_alls
            key = segment.name

        node = children.get(key)
        if node is None:
            children[key] = node = RouteNode()
        return node

    def has_handler(self, method: Method) -> bool:
        return (self.handlers.get(method) if method is not Method.ANY else self.any_handler) is not None

    def add_handler(self, method: Method, handler: Any) -> None:
        if method is Method.ANY:
            self.any_handler = handler
        else:
            self.handlers[method] = handler

    def resolve(self, method: Method) -> Any:
        handler = self.handlers.get(method)
        return self.any_handler if handler is None else handler

    def freeze(self) -> None:
        """Replace child and handler maps with read-only views, recursively."""
        for children in (self.literals, self.captures, self.catch_alls):
            for node in children.values():
                node.freeze()

        self.literals = types.MappingProxyType(self.literals)
        self.captures = types.MappingProxyType(self.captures)
        self.catch_alls = types.MappingProxyType(self.catch_alls)
        self.handlers = types.MappingProxyType(self.handlers)


class _IdentityKey:
    """Reverse table key for handlers and tags that are not hashable."""

    __slots__ = ('value',)

    def __init__(self, value: Any) -> None:
        self.value = value

    def __hash__(self) -> int:
        return id(self.value)

    def __eq__(self, other) -> bool:
        return isinstance(other, _IdentityKey) and other.value is self.value


def _reverse_key(value: Any) -> Any:
    try:
        hash(value)
    except TypeError:
        return _IdentityKey(value)
    return value


class ReverseFunction:
    """
    Reverse route builder for a single template.

    Substitutes parameters into the compiled segments, unused entries of the
    supplied data become the query string.
    """

    __slots__ = ('template', 'segments', 'required')

    def __init__(self, template: str, segments: Iterable[Segment]) -> None:
        self.template = template
        self.segments = tuple(segments)
        self.required = frozenset(s.name for s in self.segments if not isinstance(s, Literal))

    def __call__(self, data: Optional[Mapping[str, Any]] = None) -> ReverseResult:
        data = data or {}
        missing = self.required - data.keys()
        if missing:
            raise MissingParameterError(self.template, missing)

        for segment in self.segments:
            # empty segment would be dropped or misaligned on match
            if isinstance(segment, Capture) and not str(data[segment.name]):
                raise ValueError(f'{self.template}: empty value for path parameter {segment.name}')

        path = _PATH_SEPARATOR.join(s.render(data) for s in self.segments)
        if not path and self.template.startswith(_PATH_SEPARATOR):
            # root template tokenizes to single empty segment
            path = _PATH_SEPARATOR

        unused = [(k, v) for k, v in data.items() if k not in self.required]
        if not unused:
            return ReverseResult(path)

        return ReverseResult(path, _QUERY_STRING_PREFIX + urlencode(unused, quote_via=quote))

    def __repr__(self) -> str:
        return f'<ReverseFunction {self.template}>'


@dataclass(frozen=True)
class CompiledRoutes:
    """
    Result of route compilation.

    Tree maps are read-only views after compilation, share freely between threads.
    """

    tree: RouteNode
    reverse_table: Mapping[Any, ReverseFunction]


def tokenize(path: str) -> List[str]:
    path_segments = path.split(_PATH_SEPARATOR)
    # trailing separator adds single empty segment
    if len(path_segments) > 1 and not path_segments[-1]:
        path_segments.pop()
    return path_segments


def parse_template(template: str, options: CompileOptions) -> List[Segment]:
    marker = options.capture_marker
    segments: List[Segment] = []
    parameter_names = set()

    for path_segment in tokenize(template):
        if segments and isinstance(segments[-1], CatchAll):
            raise RouteConfigurationError(f'{template}: catch-all segment must be the last segment')

        if path_segment.startswith(marker):
            name = path_segment[len(marker):]
            if not name:
                raise RouteConfigurationError(f'{template}: missing path parameter name')
            segment = CatchAll(name) if name == options.catch_all_name else Capture(name)
        elif path_segment == _BARE_WILDCARD:
            segment = CatchAll(ANONYMOUS_WILDCARD_KEY)
        else:
            segments.append(Literal(path_segment))
            continue

        if segment.name in parameter_names:
            raise RouteConfigurationError(f'{template}: duplicate path parameter {segment.name}')

        parameter_names.add(segment.name)
        segments.append(segment)

    return segments


def compile_routes(routes: Iterable[Union[Route, tuple]], options: Optional[CompileOptions] = None) -> CompiledRoutes:
    options = options or CompileOptions()
    logger = options.logger

    root = RouteNode()
    reverse_table: Dict[Any, ReverseFunction] = {}
    route_count = 0

    for route in routes:
        route = _coerce_route(route)
        segments = parse_template(route.template, options)

        node = root
        for segment in segments:
            node = node.child(segment)

        method = route.method
        if node.has_handler(method):
            logger.warning('%s: redefinition of %s handler, using %r', route.template, method.value, route.handler)
        node.add_handler(method, route.handler)

        reverse_function = ReverseFunction(route.template, segments)
        if not options.reverse_only_for_tagged_routes:
            reverse_table[_reverse_key(route.handler)] = reverse_function
        if route.tag is not None:
            reverse_table[_reverse_key(route.tag)] = reverse_function

        route_count += 1

    root.freeze()
    logger.debug('Compiled %d routes, %d reverse entries', route_count, len(reverse_table))
    return CompiledRoutes(root, types.MappingProxyType(reverse_table))


def _coerce_route(route: Union[Route, tuple]) -> Route:
    if not isinstance(route, Route):
        if not isinstance(route, tuple) or len(route) not in (3, 4):
            raise RouteConfigurationError(f'Invalid route {route!r}: expected method, template, handler[, tag]')
        route = Route(*route)

    try:
        method = Method(route.method)
    except ValueError:
        raise RouteConfigurationError(f'{route.template}: unknown method {route.method}') from None

    if method is not route.method:
        route = Route(method, route.template, route.handler, route.tag)
    return route


def match(compiled: CompiledRoutes, path: str, method: Union[Method, str]) -> Optional[Match]:
    method = Method(method)
    if method is Method.ANY:
        raise ValueError(f'{method.value} is not a request method')

    result = _match_node(compiled.tree, tokenize(path), 0, method, {})
    if result is None:
        return None

    handler, params = result
    return Match(handler, {name: unquote(value) for name, value in params.items()})


def _match_node(node: RouteNode, path_segments: List[str], index: int,
                method: Method, params: Dict[str, str]) -> Optional[Tuple[Any, Dict[str, str]]]:
    if index == len(path_segments):
        handler = node.resolve(method)
        if handler is not None:
            return handler, params

        # catch-all matching zero segments
        return _match_catch_all(node, method, params, '')

    path_segment = path_segments[index]

    literal = node.literals.get(path_segment)
    if literal is not None:
        result = _match_node(literal, path_segments, index + 1, method, params)
        if result is not None:
            return result

    for name, capture in node.captures.items():
        result = _match_node(capture, path_segments, index + 1, method, {**params, name: path_segment})
        if result is not None:
            return result

    if node.catch_alls:
        return _match_catch_all(node, method, params, _PATH_SEPARATOR.join(path_segments[index:]))

    return None


def _match_catch_all(node: RouteNode, method: Method, params: Dict[str, str],
                     remainder: str) -> Optional[Tuple[Any, Dict[str, str]]]:
    # method specific handler of any spelling before any-method handlers
    for name, catch_all in node.catch_alls.items():
        handler = catch_all.handlers.get(method)
        if handler is not None:
            return handler, {**params, name: remainder}

    for name, catch_all in node.catch_alls.items():
        if catch_all.any_handler is not None:
            return catch_all.any_handler, {**params, name: remainder}

    return None


def reverse_uri_for(compiled: CompiledRoutes, handler_or_tag: Any,
                    data: Optional[Mapping[str, Any]] = None) -> ReverseResult:
    try:
        reverse_function = compiled.reverse_table[_reverse_key(handler_or_tag)]
    except KeyError:
        raise UnknownRouteError(handler_or_tag) from None

    return reverse_function(data)


class RouteTable:
    """Collects route declarations, decorator style, for later compilation."""

    def __init__(self) -> None:
        self.routes: List[Route] = []

    def __iter__(self):
        return iter(self.routes)

    def __len__(self) -> int:
        return len(self.routes)

    def add_route(self, method: Union[Method, str], template: str, handler: Any, tag: Any = None) -> None:
        self.routes.append(Route(method, template, handler, tag))

    def route(self, method: Union[Method, str], template: str, tag: Any = None) -> Callable:
        def wrapper(handler):
            self.add_route(method, template, handler, tag)
            return handler

        return wrapper

    def get(self, template: str, tag: Any = None) -> Callable:
        return self.route(Method.GET, template, tag)

    def post(self, template: str, tag: Any = None) -> Callable:
        return self.route(Method.POST, template, tag)

    def put(self, template: str, tag: Any = None) -> Callable:
        return self.route(Method.PUT, template, tag)

    def patch(self, template: str, tag: Any = None) -> Callable:
        return self.route(Method.PATCH, template, tag)

    def delete(self, template: str, tag: Any = None) -> Callable:
        return self.route(Method.DELETE, template, tag)

    def any(self, template: str, tag: Any = None) -> Callable:
        return self.route(Method.ANY, template, tag)

    def compile(self, options: Optional[CompileOptions] = None) -> CompiledRoutes:
        return compile_routes(self.routes, options)


class RouteResolver:
    # environ key for routing data
    routing_args_key: str = ROUTE_ROUTING_ARGS_KEY

    def __init__(self, compiled: CompiledRoutes) -> None:
        self.compiled = compiled

    def __call__(self, environ: Dict[str, Any]) -> Callable:
        """Route resolver."""
        route_path = environ.get(_WSGI_PATH_INFO_HEADER) or _PATH_SEPARATOR
        # single read, reload may replace table concurrently
        compiled = self.compiled

        try:
            result = match(compiled, route_path, environ[_WSGI_REQUEST_METHOD_HEADER])
        except ValueError:
            raise HTTPError(HTTPStatus.NOT_IMPLEMENTED) from None

        if result is None:
            raise NotFoundError(route_path)

        environ[self.routing_args_key] = (_NO_POSITIONAL_ARGS, result.params)
        return result.handler

    def reverse_uri_for(self, handler_or_tag: Any, data: Optional[Mapping[str, Any]] = None) -> ReverseResult:
        return reverse_uri_for(self.compiled, handler_or_tag, data)

    def reload(self, routes: Iterable[Union[Route, tuple]], options: Optional[CompileOptions] = None) -> None:
        compiled = compile_routes(routes, options)
        self.compiled = compiled
