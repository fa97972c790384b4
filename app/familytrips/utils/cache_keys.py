"""Cache key derivation from request identity."""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Union

from starlette.requests import Request

from .cache import DEFAULT_TTL_SECONDS

ANONYMOUS = "anonymous"
SHARED = "*"
IDENTITY_SEPARATOR = "|"

QueryValue = Union[str, List[str]]


@dataclass(frozen=True)
class RequestContext:
    """The request fields a cache key is derived from."""
    method: str
    path: str
    query: Mapping[str, QueryValue] = field(default_factory=dict)
    caller_id: Optional[str] = None
    caller_role: Optional[str] = None
    caller_family_id: Optional[int] = None

    @classmethod
    def from_request(
        cls,
        request: Request,
        caller_id: Optional[str] = None,
        caller_role: Optional[str] = None,
        caller_family_id: Optional[int] = None,
    ) -> "RequestContext":
        query: Dict[str, QueryValue] = {}
        for name in request.query_params.keys():
            values = request.query_params.getlist(name)
            query[name] = values[0] if len(values) == 1 else values
        return cls(
            method=request.method.upper(),
            path=request.url.path,
            query=query,
            caller_id=caller_id,
            caller_role=caller_role,
            caller_family_id=caller_family_id,
        )

    @property
    def caller_identity(self) -> Optional[str]:
        """``id``, or ``id|ROLE`` / ``id|ROLE|family`` when the principal carries them.

        Authorization depends on all three, so the same user id under another
        role or family never shares an entry.
        """
        if self.caller_id is None:
            return None
        parts = [self.caller_id]
        if self.caller_role is not None:
            parts.append(self.caller_role)
            if self.caller_family_id is not None:
                parts.append(str(self.caller_family_id))
        return IDENTITY_SEPARATOR.join(parts)


@dataclass(frozen=True)
class CacheOptions:
    """Per-route cache configuration, fixed when the route is wired."""
    ttl_seconds: int = DEFAULT_TTL_SECONDS
    exclude_query_params: FrozenSet[str] = frozenset()
    key_fn: Optional[Callable[[RequestContext], str]] = None
    vary_on_user: bool = True
    roles: Optional[FrozenSet[str]] = None

    def __post_init__(self):
        if isinstance(self.ttl_seconds, bool) or not isinstance(self.ttl_seconds, int):
            raise ValueError(f"Cache TTL must be an integer number of seconds, got {self.ttl_seconds!r}")
        if self.ttl_seconds < 0:
            raise ValueError(f"Cache TTL must not be negative, got {self.ttl_seconds}")
        if isinstance(self.exclude_query_params, str):
            raise ValueError("exclude_query_params must be a collection of names, not a string")
        object.__setattr__(self, "exclude_query_params", frozenset(self.exclude_query_params))
        if self.roles is not None:
            object.__setattr__(self, "roles", frozenset(_role_name(role) for role in self.roles))


def _role_name(role: Any) -> str:
    return getattr(role, "value", role)


def serialize_query(query: Mapping[str, QueryValue], exclude: Iterable[str] = ()) -> str:
    """Stable JSON rendering of the query, minus excluded names."""
    excluded = set(exclude)
    filtered = {name: value for name, value in query.items() if name not in excluded}
    return json.dumps(filtered, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def build_cache_key(context: RequestContext, options: Optional[CacheOptions] = None) -> str:
    """Derive `{METHOD}:{path}:{caller}:{query}` for a request.

    A custom ``key_fn`` overrides everything. Callers with no identity share the
    ``anonymous`` segment; identity-agnostic routes (``vary_on_user=False``) use
    ``*`` for every caller.
    """
    options = options or CacheOptions()
    if options.key_fn is not None:
        return options.key_fn(context)

    if not options.vary_on_user:
        caller = SHARED
    elif context.caller_identity is None:
        caller = ANONYMOUS
    else:
        caller = context.caller_identity

    query = serialize_query(context.query, options.exclude_query_params)
    return f"{context.method}:{context.path}:{caller}:{query}"
