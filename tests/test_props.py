# tests/test_props.py
"""Property-based tests for content-key deduplication"""

import string

from hypothesis import given, strategies as st

from flowvault.services.content_key import derive_key, fingerprint, object_names

segment = st.text(alphabet=string.ascii_letters + string.digits + "-_.", min_size=1, max_size=12)
paths = st.lists(segment, min_size=1, max_size=5).map(lambda parts: "/" + "/".join(parts))
queries = st.text(alphabet=string.ascii_letters + string.digits + "=&%-_.", max_size=40)
fragments = st.text(alphabet=string.ascii_letters + string.digits, max_size=10)


@given(paths, queries, queries)
def test_query_does_not_change_key(path, q1, q2):
    base = "https://storage.googleapis.com" + path
    assert derive_key(f"{base}?{q1}") == derive_key(f"{base}?{q2}") == base
    assert fingerprint(derive_key(f"{base}?{q1}")) == fingerprint(derive_key(f"{base}?{q2}"))


@given(paths, fragments)
def test_fragment_does_not_change_key(path, frag):
    base = "https://storage.googleapis.com" + path
    assert derive_key(f"{base}#{frag}") == base


@given(st.text(max_size=60))
def test_fingerprint_is_lowercase_sha256_hex(key):
    digest = fingerprint(key)
    assert len(digest) == 64
    assert set(digest) <= set("0123456789abcdef")
    assert fingerprint(key) == digest


@given(paths)
def test_different_paths_give_different_keys(path):
    base = "https://storage.googleapis.com"
    assert derive_key(base + path) != derive_key(base + path + "x")


def test_origin_normalization():
    assert derive_key("HTTPS://Storage.GoogleAPIs.com:443/x/a.png") == "https://storage.googleapis.com/x/a.png"
    assert derive_key("http://storage.googleapis.com:8080/a.png?x=1") == "http://storage.googleapis.com:8080/a.png"
    assert derive_key("https://storage.googleapis.com") == "https://storage.googleapis.com/"


def test_unparseable_input_is_its_own_key():
    assert derive_key("not a url") == "not a url"
    assert derive_key("https://host:notaport/a.png") == "https://host:notaport/a.png"


def test_object_names():
    digest = fingerprint("https://storage.googleapis.com/x/a.png")
    assert object_names(digest) == (f"flow_{digest}.jpg", f"flow_{digest}.json")
