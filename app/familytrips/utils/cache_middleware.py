"""Route decorators that put the response cache in front of endpoints.

``cached`` memoizes successful GET responses; ``invalidates`` clears matching
entries after a successful mutation. Both wrap the endpoint and hand FastAPI a
signature with the ``Request`` (and ``BackgroundTasks``) they need, so routes
stay ordinary functions:

    @router.get("/")
    @cached(ttl_seconds=300, exclude_query_params=["_t"])
    def get_trips(...):
        ...

    @router.put("/{trip_id}")
    @invalidates(r"^GET:.*/api/trips")
    def update_trip(...):
        ...
"""

import asyncio
import functools
import inspect
import logging
import re
from typing import Any, Callable, Iterable, Optional, Tuple, Union

from fastapi import BackgroundTasks, Request, Response
from fastapi.encoders import jsonable_encoder
from starlette.concurrency import run_in_threadpool

from .. import config
from ..auth import resolve_principal
from .cache import CacheStore, KeyMatcher
from .cache_keys import CacheOptions, RequestContext, build_cache_key

logger = logging.getLogger(__name__)

_MISSING = object()

Pattern = Union[str, re.Pattern, KeyMatcher]


class CachePatternError(ValueError):
    """An invalidation pattern could not be turned into a key matcher."""


def get_response_cache(request: Request) -> Optional[CacheStore]:
    """The store attached to the application, or None when caching is off."""
    return getattr(request.app.state, "response_cache", None)


def exact_key(key: str) -> KeyMatcher:
    """Matcher for a single cache key."""
    return lambda candidate: candidate == key


def compile_matcher(pattern: Pattern) -> KeyMatcher:
    """Turn a regex string, compiled regex or predicate into a key matcher."""
    if isinstance(pattern, re.Pattern):
        return lambda key: pattern.search(key) is not None
    if isinstance(pattern, str):
        if not pattern:
            raise CachePatternError("Empty invalidation pattern would match every cached response")
        try:
            compiled = re.compile(pattern)
        except re.error as e:
            raise CachePatternError(f"Invalid invalidation pattern {pattern!r}: {e}") from e
        return lambda key: compiled.search(key) is not None
    if callable(pattern):
        return pattern
    raise CachePatternError(f"Unsupported invalidation pattern {pattern!r}")


def _with_param(signature: inspect.Signature, annotation: type, name: str) -> Tuple[inspect.Signature, str, bool]:
    """Find a parameter of the given type, adding a keyword-only one if missing."""
    for param in signature.parameters.values():
        if inspect.isclass(param.annotation) and issubclass(param.annotation, annotation):
            return signature, param.name, False

    params = list(signature.parameters.values())
    new_param = inspect.Parameter(name, inspect.Parameter.KEYWORD_ONLY, annotation=annotation)
    if params and params[-1].kind is inspect.Parameter.VAR_KEYWORD:
        params.insert(len(params) - 1, new_param)
    else:
        params.append(new_param)
    return signature.replace(parameters=params), name, True


def _response_param(signature: inspect.Signature) -> Optional[str]:
    for param in signature.parameters.values():
        if inspect.isclass(param.annotation) and issubclass(param.annotation, Response):
            return param.name
    return None


def _take(kwargs: dict, name: str, added: bool) -> Any:
    return kwargs.pop(name) if added else kwargs[name]


async def _call_endpoint(endpoint: Callable, is_async: bool, args: tuple, kwargs: dict) -> Any:
    if is_async:
        return await endpoint(*args, **kwargs)
    return await run_in_threadpool(endpoint, *args, **kwargs)


def _expose(wrapper: Callable, signature: inspect.Signature) -> None:
    # FastAPI must introspect the async wrapper, not the endpoint it wraps
    del wrapper.__wrapped__
    wrapper.__signature__ = signature


def _status_of(result: Any, kwargs: dict, sub_response_param: Optional[str]) -> Optional[int]:
    """Status the endpoint chose, or None when the route default applies."""
    if isinstance(result, Response):
        return result.status_code
    if sub_response_param is not None:
        return kwargs[sub_response_param].status_code
    return None


def _is_success(status_code: Optional[int]) -> bool:
    return status_code is None or 200 <= status_code < 300


def cached(
    ttl_seconds: Optional[int] = None,
    *,
    exclude_query_params: Iterable[str] = (),
    key_fn: Optional[Callable[[RequestContext], str]] = None,
    vary_on_user: bool = True,
    roles: Optional[Iterable[Any]] = None,
):
    """Cache successful GET responses of the decorated endpoint.

    ``roles`` restricts caching to principals holding one of the roles; other
    callers always reach the endpoint. Any failure inside the cache is logged
    and treated as a miss, never surfaced to the caller.
    """
    options = CacheOptions(
        ttl_seconds=config.CACHE_DEFAULT_TTL if ttl_seconds is None else ttl_seconds,
        exclude_query_params=exclude_query_params,
        key_fn=key_fn,
        vary_on_user=vary_on_user,
        roles=roles,
    )

    def decorator(endpoint: Callable) -> Callable:
        is_async = asyncio.iscoroutinefunction(endpoint)
        original = inspect.signature(endpoint)
        sub_response_param = _response_param(original)
        signature, request_param, request_added = _with_param(original, Request, "cache_request")

        @functools.wraps(endpoint)
        async def wrapper(*args, **kwargs):
            request: Request = _take(kwargs, request_param, request_added)
            store = get_response_cache(request)
            if store is None or request.method != "GET":
                return await _call_endpoint(endpoint, is_async, args, kwargs)

            principal = resolve_principal(request)
            if options.roles is not None and (principal is None or principal.role.value not in options.roles):
                return await _call_endpoint(endpoint, is_async, args, kwargs)

            key = None
            try:
                context = RequestContext.from_request(
                    request,
                    caller_id=principal.id if principal else None,
                    caller_role=principal.role.value if principal else None,
                    caller_family_id=principal.family_id if principal else None,
                )
                key = build_cache_key(context, options)
                hit = store.get(key, _MISSING)
            except Exception:
                logger.warning("Cache lookup failed for %s, bypassing cache", request.url.path, exc_info=True)
                hit = _MISSING

            if hit is not _MISSING:
                logger.debug("Cache hit: %s", key)
                return hit

            result = await _call_endpoint(endpoint, is_async, args, kwargs)

            # A replay can only reproduce the route's declared status, so responses whose
            # status the endpoint set itself (errors included) are never stored
            if key is not None and _status_of(result, kwargs, sub_response_param) is None:
                try:
                    store.set(key, jsonable_encoder(result), options.ttl_seconds)
                    logger.debug("Cached %s for %ss", key, options.ttl_seconds)
                except Exception:
                    logger.warning("Could not cache response for %s", key, exc_info=True)
            return result

        _expose(wrapper, signature)
        wrapper.cache_options = options
        return wrapper

    return decorator


def _run_invalidation(store: CacheStore, matcher: KeyMatcher, label: str) -> None:
    try:
        removed = store.delete_by_pattern(matcher)
    except Exception:
        logger.warning("Cache invalidation failed after %s", label, exc_info=True)
        return
    if removed:
        logger.info("Invalidated %d cached responses after %s", removed, label)


def invalidates(*patterns: Pattern):
    """Clear cached responses matching any pattern once the endpoint succeeds.

    Patterns are compiled here, so a malformed one fails when the router module
    is imported rather than on a request. The sweep runs as a background task
    after the response has been sent.
    """
    if not patterns:
        raise CachePatternError("invalidates() needs at least one pattern")
    matchers = [compile_matcher(pattern) for pattern in patterns]

    def matches(key: str) -> bool:
        return any(matcher(key) for matcher in matchers)

    def decorator(endpoint: Callable) -> Callable:
        is_async = asyncio.iscoroutinefunction(endpoint)
        original = inspect.signature(endpoint)
        sub_response_param = _response_param(original)
        signature, request_param, request_added = _with_param(original, Request, "cache_request")
        signature, tasks_param, tasks_added = _with_param(signature, BackgroundTasks, "cache_tasks")

        @functools.wraps(endpoint)
        async def wrapper(*args, **kwargs):
            request: Request = _take(kwargs, request_param, request_added)
            tasks: BackgroundTasks = _take(kwargs, tasks_param, tasks_added)

            result = await _call_endpoint(endpoint, is_async, args, kwargs)

            if not _is_success(_status_of(result, kwargs, sub_response_param)):
                return result

            store = get_response_cache(request)
            if store is None:
                return result

            label = f"{request.method} {request.url.path}"
            tasks.add_task(_run_invalidation, store, matches, label)
            if isinstance(result, Response) and result.background is not tasks:
                if result.background is not None:
                    existing = result.background
                    result.background = BackgroundTasks()
                    result.background.add_task(existing)
                    result.background.add_task(_run_invalidation, store, matches, label)
                else:
                    result.background = tasks
            return result

        _expose(wrapper, signature)
        return wrapper

    return decorator
