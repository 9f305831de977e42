"""Property-based tests for fingerprint module using Hypothesis.

Verifies canonicalization properties across generated methods, paths,
query parameters, headers and bodies.
"""

from urllib.parse import urlencode

from hypothesis import assume, given
from hypothesis import strategies as st

from idempotency_engine.fingerprint import compute_fingerprint

http_method_strategy = st.sampled_from(["POST", "PUT", "PATCH", "DELETE"])

path_strategy = st.text(
    alphabet=st.characters(whitelist_categories=("Ll", "Nd"), whitelist_characters="/-_"),
    min_size=1,
    max_size=60,
).map(lambda s: "/" + s.strip("/"))

query_dict_strategy = st.dictionaries(
    st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=10),
    st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", max_size=10),
    max_size=6,
)

body_strategy = st.binary(max_size=2048)


@given(method=http_method_strategy, path=path_strategy, body=body_strategy)
def test_deterministic(method: str, path: str, body: bytes) -> None:
    a = compute_fingerprint(method, path, "", {}, body)
    b = compute_fingerprint(method, path, "", {}, body)
    assert a == b
    assert len(a) == 64


@given(params=query_dict_strategy)
def test_query_parameter_order_independence(params: dict[str, str]) -> None:
    forward = urlencode(sorted(params.items()))
    backward = urlencode(sorted(params.items(), reverse=True))

    assert compute_fingerprint("POST", "/x", forward, {}, b"") == compute_fingerprint(
        "POST", "/x", backward, {}, b""
    )


@given(body_a=body_strategy, body_b=body_strategy)
def test_different_payloads_differ(body_a: bytes, body_b: bytes) -> None:
    assume(body_a != body_b)
    assert compute_fingerprint("POST", "/x", "", {}, body_a) != compute_fingerprint(
        "POST", "/x", "", {}, body_b
    )


@given(method=http_method_strategy)
def test_method_case_insensitive(method: str) -> None:
    assert compute_fingerprint(method.lower(), "/x", "", {}, b"") == compute_fingerprint(
        method, "/x", "", {}, b""
    )


@given(value=st.text(alphabet="abcdefghijklmnopqrstuvwxyz/;=", min_size=1, max_size=40))
def test_header_name_case_insensitive(value: str) -> None:
    lower = compute_fingerprint("POST", "/x", "", {"content-type": value}, b"")
    upper = compute_fingerprint("POST", "/x", "", {"CONTENT-TYPE": value}, b"")
    assert lower == upper


@given(noise=st.text(max_size=40))
def test_unlisted_header_values_ignored(noise: str) -> None:
    base = compute_fingerprint("POST", "/x", "", {}, b"body")
    noisy = compute_fingerprint("POST", "/x", "", {"X-Request-ID": noise}, b"body")
    assert base == noisy
