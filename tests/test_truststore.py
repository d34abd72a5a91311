"""Tests for trust store assembly and persistence."""

import pytest

from install_certs.exceptions import PersistenceError, TrustStoreError
from install_certs.truststore import DEFAULT_ALIAS_SUFFIX, TrustStore, host_alias_pattern


@pytest.fixture
def defaults(other_pki):
    return TrustStore({"otherrootca" + DEFAULT_ALIAS_SUFFIX: other_pki.root})


def test_add_entries_reversed_aliases(pki):
    """Test that the root-most certificate gets alias -1 and the leaf is skipped."""
    store = TrustStore()
    added = store.add_entries(pki.chain, pki.host)

    assert added == [("example.internal-1", pki.root), ("example.internal-2", pki.intermediate)]
    assert store.aliases() == ["example.internal-1", "example.internal-2"]
    assert pki.leaf not in store.certificates()


def test_add_entries_without_leaf_in_chain(pki):
    store = TrustStore()
    added = store.add_entries([pki.intermediate], pki.host)

    assert [alias for alias, _ in added] == ["example.internal-1"]


def test_add_entries_only_leaf(pki):
    store = TrustStore()
    assert store.add_entries([pki.leaf], pki.host) == []
    assert len(store) == 0


def test_to_portable_includes_defaults(pki, defaults):
    store = defaults.copy()
    store.add_entries(pki.chain, pki.host)

    portable = store.to_portable()

    assert portable.aliases() == ["otherrootca [default]", "example.internal-1", "example.internal-2"]
    assert portable is not store


def test_to_portable_with_filter_keeps_only_host_entries(pki, defaults):
    """Test that excluding the defaults leaves exactly the captured aliases."""
    store = defaults.copy()
    store.add_entries(pki.chain, pki.host)

    portable = store.to_portable(alias_filter=host_alias_pattern(pki.host))

    assert portable.aliases() == ["example.internal-1", "example.internal-2"]
    assert "otherrootca [default]" in store


def test_host_alias_pattern_escapes_dots(pki):
    store = TrustStore()
    store.set_entry("exampleXinternal-1", pki.root)
    store.set_entry("example.internal-10", pki.root)
    store.set_entry("example.internal-x", pki.root)

    assert store.filter(host_alias_pattern("example.internal")).aliases() == ["example.internal-10"]


def test_copy_is_independent(pki, defaults):
    copy = defaults.copy()
    copy.add_entries(pki.chain, pki.host)

    assert len(defaults) == 1
    assert len(copy) == 3


def test_from_defaults_returns_fresh_copies():
    """Test that the platform CA set is loaded and never shared."""
    first = TrustStore.from_defaults()
    second = TrustStore.from_defaults()

    assert len(first) > 0
    assert all(alias.endswith(DEFAULT_ALIAS_SUFFIX) for alias in first.aliases())
    first.set_entry("example.internal-1", first.certificates()[0])
    assert "example.internal-1" not in second
    assert len(set(first.aliases())) == len(first)


def test_save_and_load(tmp_path, pki, defaults):
    store = defaults.copy()
    store.add_entries(pki.chain, pki.host)
    path = tmp_path / "example_internal.p12"

    size = store.save(path, "changeit")
    loaded = TrustStore.load(path, "changeit")

    assert size == path.stat().st_size
    assert sorted(loaded.aliases()) == sorted(store.aliases())
    assert loaded.get("example.internal-1") == pki.root
    assert loaded.get("example.internal-2") == pki.intermediate


def test_load_wrong_password(tmp_path, pki):
    store = TrustStore()
    store.add_entries(pki.chain, pki.host)
    path = tmp_path / "store.p12"
    store.save(path, "changeit")

    with pytest.raises(PersistenceError):
        TrustStore.load(path, "wrong")


def test_save_unwritable_path(tmp_path, pki):
    store = TrustStore()
    store.add_entries(pki.chain, pki.host)

    with pytest.raises(PersistenceError) as exc_info:
        store.save(tmp_path, "changeit")
    assert exc_info.value.path == tmp_path


def test_empty_store_cannot_be_serialized():
    with pytest.raises(TrustStoreError):
        TrustStore().to_pkcs12("changeit")
