"""
Tests for package-name and CVE lookups.

These tests validate:
- End-to-end ingest then lookup by CVE and by package
- Scoping to the store's family and the requested OS major version
- Full hydration of advisory children, packages and references
- Broken parent chains surface as NotFoundDuringHydrationError
- Lookups from several threads, including during a refresh
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from models import Family, FetchMeta
from storage import AdvisoryStore, NotFoundDuringHydrationError, open_store


def test_end_to_end_lookup(store, make_root, fetch_meta):
    store.refresh(make_root(), fetch_meta)

    by_cve = store.get_by_cve_id("7.2", "CVE-2020-1")

    assert len(by_cve) == 1
    packs = by_cve[0].affected_packs
    assert [(p.name, p.version) for p in packs] == [("openssl", "1.1.1.el7")]

    # Different minor, same major
    by_package = store.get_by_package_name("7.3", "openssl")
    assert by_package == by_cve

    assert store.get_by_package_name("6.0", "openssl") == []


def test_lookup_hydrates_full_aggregate(store, make_root, fetch_meta):
    store.refresh(make_root(), fetch_meta)

    definition = store.get_by_package_name("7", "openssl")[0]

    assert definition.definition_id == "oval:com.redhat.rhsa:def:20200001"
    assert definition.title == "CVE-2020-1 in openssl"
    assert definition.advisory.severity == "Important"
    assert [c.cve_id for c in definition.advisory.cves] == ["CVE-2020-1"]
    assert definition.advisory.cves[0].cwe == "CWE-120"
    assert [b.url for b in definition.advisory.bugzillas] == ["https://bugzilla.redhat.com/1"]
    assert [c.name for c in definition.advisory.affected_cpe_list] == ["cpe:/o:redhat:enterprise_linux:7"]
    assert [r.ref_id for r in definition.references] == ["CVE-2020-1"]
    assert definition.advisory.definition_id == definition.id


def test_affected_packages_filtered_to_requested_major(store, make_root, fetch_meta):
    root = make_root(packages=(
        ("openssl", "1.0.2k-19.el7"),
        ("openssl", "1.1.1g-11.el8"),
        ("openssl-libs", "1.0.2k-19.el7"),
    ))
    store.refresh(root, fetch_meta)

    definitions = store.get_by_cve_id("7.9", "CVE-2020-1")

    assert len(definitions) == 1
    assert [(p.name, p.version) for p in definitions[0].affected_packs] == [
        ("openssl", "1.0.2k-19.el7"),
        ("openssl-libs", "1.0.2k-19.el7"),
    ]


def test_definition_matched_twice_returned_per_match(store, make_root, fetch_meta):
    store.refresh(make_root(packages=(("kernel", "3.10.0-1.el7"), ("kernel", "3.10.0-2.el7"))), fetch_meta)

    definitions = store.get_by_package_name("7.2", "kernel")

    assert len(definitions) == 2
    assert [d.definition_id for d in definitions] == ["oval:com.redhat.rhsa:def:20200001"] * 2
    assert definitions[0] == definitions[1]
    assert all(len(d.affected_packs) == 2 for d in definitions)

    # Each match is hydrated into its own objects
    assert definitions[0] is not definitions[1]
    assert definitions[0].advisory is not definitions[1].advisory
    assert definitions[0].affected_packs is not definitions[1].affected_packs
    definitions[0].advisory.cves.clear()
    assert [c.cve_id for c in definitions[1].advisory.cves] == ["CVE-2020-1"]


def test_lookup_excludes_other_family(temp_db, store, make_root, fetch_meta):
    store.refresh(make_root(family=Family.DEBIAN, os_version="7",
                            definition_id="oval:org.debian:def:1"),
                  FetchMeta(file_name="oval-definitions-wheezy.xml", timestamp=fetch_meta.timestamp))

    assert store.get_by_package_name("7.2", "openssl") == []
    assert store.get_by_cve_id("7.2", "CVE-2020-1") == []

    debian = AdvisoryStore(temp_db, "debian")
    assert [d.definition_id for d in debian.get_by_cve_id("7", "CVE-2020-1")] == ["oval:org.debian:def:1"]


def test_lookup_excludes_other_major(store, make_root, fetch_meta):
    store.refresh(make_root(os_version="6.10", packages=(("openssl", "1.0.1e-58.el6"),)),
                  FetchMeta(file_name="com.redhat.rhsa-RHEL6.xml", timestamp=fetch_meta.timestamp))
    store.refresh(make_root(os_version="7.2", definition_id="oval:com.redhat.rhsa:def:20200002"),
                  fetch_meta)

    definitions = store.get_by_package_name("7.2", "openssl")

    assert [d.definition_id for d in definitions] == ["oval:com.redhat.rhsa:def:20200002"]


def test_lookup_order_follows_discovery(store, make_root, fetch_meta):
    first = make_root(definition_id="oval:def:a", cve_id="CVE-2021-1")
    second = make_root(definition_id="oval:def:b", cve_id="CVE-2021-2")
    first.definitions.extend(second.definitions)
    store.refresh(first, fetch_meta)

    definitions = store.get_by_package_name("7.2", "openssl")

    assert [d.definition_id for d in definitions] == ["oval:def:a", "oval:def:b"]


def test_no_matches_returns_empty_list(store, make_root, fetch_meta):
    store.refresh(make_root(), fetch_meta)

    assert store.get_by_package_name("7.2", "does-not-exist") == []
    assert store.get_by_cve_id("7.2", "CVE-1999-0001") == []


def test_missing_advisory_raises(store, temp_db, make_root, fetch_meta):
    store.refresh(make_root(), fetch_meta)
    temp_db.connect().execute("DELETE FROM advisories")

    with pytest.raises(NotFoundDuringHydrationError) as exc_info:
        store.get_by_package_name("7.2", "openssl")

    assert exc_info.value.table == "advisories"


def test_orphan_package_raises(store, temp_db):
    temp_db.connect().execute(
        "INSERT INTO packages (id, definition_id, name, version) VALUES (?, ?, ?, ?)",
        [temp_db.allocate_ids("packages", 1)[0], 4242, "openssl", "1.0.el7"],
    )

    with pytest.raises(NotFoundDuringHydrationError) as exc_info:
        store.get_by_package_name("7.2", "openssl")

    assert exc_info.value.table == "definitions"
    assert exc_info.value.key == 4242


def test_orphan_cve_raises(store, temp_db):
    temp_db.connect().execute(
        "INSERT INTO cves (id, advisory_id, cve_id) VALUES (?, ?, ?)",
        [temp_db.allocate_ids("cves", 1)[0], 77, "CVE-2020-1"],
    )

    with pytest.raises(NotFoundDuringHydrationError) as exc_info:
        store.get_by_cve_id("7.2", "CVE-2020-1")

    assert exc_info.value.table == "advisories"


def test_lookup_after_replace_sees_new_generation(store, make_root, fetch_meta):
    store.refresh(make_root(packages=(("openssl", "1.0.el7"),)), fetch_meta)
    store.refresh(
        make_root(packages=(("openssl", "1.1.el7"),)),
        FetchMeta(file_name=fetch_meta.file_name, timestamp=fetch_meta.timestamp + timedelta(days=1)),
    )

    definitions = store.get_by_package_name("7.2", "openssl")

    assert len(definitions) == 1
    assert [p.version for p in definitions[0].affected_packs] == ["1.1.el7"]


def test_count_definitions(store, make_root, fetch_meta):
    assert store.count_definitions("7") == 0

    store.refresh(make_root(), fetch_meta)

    assert store.count_definitions("7.5") == 1
    assert store.count_definitions("8") == 0


def test_open_store_initializes_schema(tmp_path, make_root, fetch_meta):
    store = open_store("RedHat", str(tmp_path / "fresh.duckdb"))
    try:
        store.refresh(make_root(), fetch_meta)
        assert store.family is Family.REDHAT
        assert len(store.get_by_cve_id("7", "CVE-2020-1")) == 1
    finally:
        store.db.close()


def test_concurrent_lookups_share_one_database(store, make_root, fetch_meta):
    store.refresh(make_root(), fetch_meta)

    def lookup(i):
        if i % 2:
            return store.get_by_cve_id("7.2", "CVE-2020-1")
        return store.get_by_package_name("7.2", "openssl")

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lookup, range(200)))

    assert all(len(definitions) == 1 for definitions in results)
    assert all(d[0].affected_packs[0].version == "1.1.1.el7" for d in results)


def test_lookup_during_refresh_sees_whole_generations(store, make_root, fetch_meta):
    def generation(g):
        # A fresh aggregate per refresh; insert writes ids onto it
        return make_root(cve_id=f"CVE-2020-{g}", packages=(("openssl", f"1.{g}.el7"),))

    store.refresh(generation(0), fetch_meta)

    stop = threading.Event()
    seen = []
    errors = []

    def reader():
        while True:
            try:
                seen.append(store.get_by_package_name("7.2", "openssl"))
            except Exception as e:
                errors.append(e)
            if stop.is_set():
                return

    thread = threading.Thread(target=reader)
    thread.start()
    try:
        for g in range(1, 11):
            metrics = store.refresh(
                generation(g),
                FetchMeta(file_name=fetch_meta.file_name, timestamp=fetch_meta.timestamp + timedelta(hours=g)),
            )
            assert metrics.replaced is True
    finally:
        stop.set()
        thread.join()

    assert errors == []
    assert seen
    for definitions in seen:
        assert len(definitions) == 1
        g = definitions[0].advisory.cves[0].cve_id.rsplit("-", 1)[1]
        assert [p.version for p in definitions[0].affected_packs] == [f"1.{g}.el7"]

    final = store.get_by_package_name("7.2", "openssl")
    assert [c.cve_id for c in final[0].advisory.cves] == ["CVE-2020-10"]
