import pytest

from familytrips.utils.cache_keys import CacheOptions, RequestContext, build_cache_key, serialize_query


def test_key_layout_for_authenticated_caller():
    context = RequestContext(method="GET", path="/api/families", caller_id="u1")

    assert build_cache_key(context) == "GET:/api/families:u1:{}"


def test_identical_requests_share_a_key():
    first = RequestContext(method="GET", path="/api/trips", query={"b": "2", "a": "1"}, caller_id="u1")
    second = RequestContext(method="GET", path="/api/trips", query={"a": "1", "b": "2"}, caller_id="u1")

    assert build_cache_key(first) == build_cache_key(second)
    assert build_cache_key(first) == 'GET:/api/trips:u1:{"a":"1","b":"2"}'


def test_different_callers_get_different_keys():
    context_u1 = RequestContext(method="GET", path="/api/trips", caller_id="u1")
    context_u2 = RequestContext(method="GET", path="/api/trips", caller_id="u2")

    assert build_cache_key(context_u1) != build_cache_key(context_u2)


def test_anonymous_caller_uses_sentinel():
    context = RequestContext(method="GET", path="/api/trips")

    assert build_cache_key(context) == "GET:/api/trips:anonymous:{}"


def test_empty_identity_does_not_collide_with_anonymous():
    anonymous = RequestContext(method="GET", path="/api/trips")
    empty = RequestContext(method="GET", path="/api/trips", caller_id="")

    assert build_cache_key(empty) == "GET:/api/trips::{}"
    assert build_cache_key(empty) != build_cache_key(anonymous)


def test_excluded_query_params_do_not_fragment_keys():
    options = CacheOptions(exclude_query_params=["foo"])
    first = RequestContext(method="GET", path="/api/gear/trip/t1", query={"foo": "1"}, caller_id="u1")
    second = RequestContext(method="GET", path="/api/gear/trip/t1", query={"foo": "2"}, caller_id="u1")

    assert build_cache_key(first, options) == build_cache_key(second, options)
    assert build_cache_key(first, options) == "GET:/api/gear/trip/t1:u1:{}"


def test_remaining_query_params_still_distinguish_keys():
    options = CacheOptions(exclude_query_params=["_t"])
    drafts = RequestContext(method="GET", path="/api/trips", query={"draft": "true", "_t": "1"}, caller_id="u1")
    published = RequestContext(method="GET", path="/api/trips", query={"draft": "false", "_t": "1"}, caller_id="u1")

    assert build_cache_key(drafts, options) != build_cache_key(published, options)


def test_repeated_query_params_serialize_as_list():
    assert serialize_query({"tag": ["a", "b"], "x": "1"}) == '{"tag":["a","b"],"x":"1"}'


def test_custom_key_fn_overrides_derivation():
    options = CacheOptions(key_fn=lambda ctx: f"custom:{ctx.path}")
    context = RequestContext(method="GET", path="/api/trips", query={"a": "1"}, caller_id="u1")

    assert build_cache_key(context, options) == "custom:/api/trips"


def test_identity_agnostic_route_shares_entries_across_callers():
    options = CacheOptions(vary_on_user=False)
    context_u1 = RequestContext(method="GET", path="/api/trips", caller_id="u1")
    anonymous = RequestContext(method="GET", path="/api/trips")

    assert build_cache_key(context_u1, options) == build_cache_key(anonymous, options) == "GET:/api/trips:*:{}"


@pytest.mark.parametrize("ttl", [-1, 1.5, None, "300", True])
def test_options_reject_invalid_ttl(ttl):
    with pytest.raises(ValueError):
        CacheOptions(ttl_seconds=ttl)


def test_options_reject_bare_string_for_excluded_params():
    with pytest.raises(ValueError):
        CacheOptions(exclude_query_params="_t")


def test_options_normalize_roles():
    from familytrips.auth import Role

    options = CacheOptions(roles=[Role.FAMILY, "TRIP_ADMIN"])

    assert options.roles == frozenset({"FAMILY", "TRIP_ADMIN"})


def test_role_and_family_are_part_of_the_identity():
    family = RequestContext(method="GET", path="/api/trips", caller_id="u1", caller_role="FAMILY", caller_family_id=3)
    other_family = RequestContext(method="GET", path="/api/trips", caller_id="u1", caller_role="FAMILY", caller_family_id=4)
    promoted = RequestContext(method="GET", path="/api/trips", caller_id="u1", caller_role="SUPER_ADMIN")

    assert family.caller_identity == "u1|FAMILY|3"
    assert build_cache_key(family) == "GET:/api/trips:u1|FAMILY|3:{}"
    assert build_cache_key(promoted) == "GET:/api/trips:u1|SUPER_ADMIN:{}"
    assert len({build_cache_key(family), build_cache_key(other_family), build_cache_key(promoted)}) == 3
