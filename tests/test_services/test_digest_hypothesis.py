"""Property-based tests for digest invariants."""

from __future__ import annotations

import random
import string

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from crmsync.services.digest_service import normalize, stable_digest

PROPERTY_SETTINGS = settings(
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_KEY = st.text(alphabet=string.ascii_letters + string.digits + "_", min_size=1, max_size=8)
_SCALAR = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(min_value=-(2**31), max_value=2**31),
    st.text(max_size=12),
)
_PAYLOAD = st.recursive(
    _SCALAR,
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(_KEY, children, max_size=4),
    ),
    max_leaves=20,
)


def _shuffled(value: object, rng: random.Random) -> object:
    if isinstance(value, dict):
        items = [(key, _shuffled(item, rng)) for key, item in value.items()]
        rng.shuffle(items)
        return dict(items)
    if isinstance(value, list):
        return [_shuffled(item, rng) for item in value]
    return value


@PROPERTY_SETTINGS
@given(payload=st.dictionaries(_KEY, _PAYLOAD, max_size=6), seed=st.integers())
def test_digest_ignores_key_order(payload: dict[str, object], seed: int) -> None:
    reordered = _shuffled(payload, random.Random(seed))
    assert stable_digest(reordered) == stable_digest(payload)


@PROPERTY_SETTINGS
@given(payload=_PAYLOAD)
def test_normalize_is_idempotent(payload: object) -> None:
    once = normalize(payload)
    assert normalize(once) == once


@PROPERTY_SETTINGS
@given(items=st.lists(st.integers(), min_size=2, max_size=6, unique=True))
def test_digest_depends_on_sequence_order(items: list[int]) -> None:
    assert stable_digest({"items": items}) != stable_digest({"items": list(reversed(items))})


@PROPERTY_SETTINGS
@given(payload=_PAYLOAD)
def test_digest_is_deterministic(payload: object) -> None:
    assert stable_digest(payload) == stable_digest(payload)
