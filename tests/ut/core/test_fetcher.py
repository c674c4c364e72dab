"""发布拉取与依赖递归测试"""

from __future__ import annotations

import json

import pytest

from dnpmanager.core.exceptions import (
    CyclicDependencyError,
    FetchTimeoutError,
    NotFoundError,
    ValidationError,
)
from dnpmanager.core.models import PackageRequest
from dnpmanager.core.release import ReleaseFetcher, ReleaseIndex

MAIN = "main.dnp.dappnode.eth"
DEP = "dependency.dnp.dappnode.eth"
UNKNOWN_HASH = "QmWcJrobqhHF7GWpqEbxdv2cWCCXbACmq85Hh7aJ1eu8rn"


def _fetcher(store, config, index_file, packages: dict[str, dict[str, str]]) -> ReleaseFetcher:
    index_file(packages)
    return ReleaseFetcher(store, ReleaseIndex(config.release_index), max_workers=4)


class TestGetRelease:
    def test_manifest_release_by_hash(self, store, config, index_file, manifest) -> None:
        h = store.add_json(manifest(MAIN, "0.1.0", environment=["A=1"]))
        fetcher = _fetcher(store, config, index_file, {})

        release = fetcher.get_release(PackageRequest.parse(h))
        assert release.name == MAIN
        assert release.version == "0.1.0"
        assert release.hash == h
        assert release.req_version == h
        assert release.is_directory is False
        assert release.compose.package_version() == "0.1.0"
        assert release.compose.package_origin() == h

    def test_manifest_release_by_range(self, store, config, index_file, manifest) -> None:
        h1 = store.add_json(manifest(MAIN, "0.1.0"))
        h2 = store.add_json(manifest(MAIN, "0.1.4"))
        h3 = store.add_json(manifest(MAIN, "0.2.0"))
        fetcher = _fetcher(store, config, index_file, {
            MAIN: {"0.1.0": h1, "0.1.4": h2, "0.2.0": h3},
        })

        release = fetcher.get_release(PackageRequest.parse(f"{MAIN}@^0.1.0"))
        assert release.version == "0.1.4"
        assert release.req_version == "0.1.4"
        assert fetcher.get_release(PackageRequest.parse(MAIN)).version == "0.2.0"

    def test_directory_release(self, store, config, index_file) -> None:
        wizard = {"fields": [{"id": "payout", "target": {"type": "environment", "name": "PAYOUT"},
                              "title": "Payout address"}]}
        compose = (
            "version: '3.5'\n"
            "services:\n"
            f"  {MAIN}:\n"
            f"    image: {MAIN}:0.1.0\n"
            "    environment:\n"
            "      - PAYOUT=\n"
        )
        h = store.add_dir({
            "dappnode_package.json": json.dumps({"name": MAIN, "version": "0.1.0"}),
            "docker-compose.yml": compose,
            "setup-wizard.json": json.dumps(wizard),
            "disclaimer.md": "Use at your own risk",
            "avatar.png": b"\x89PNG",
            "main.dnp.dappnode.eth_0.1.0.tar.xz": b"img",
        }, sizes={"main.dnp.dappnode.eth_0.1.0.tar.xz": 12345})
        fetcher = _fetcher(store, config, index_file, {})

        release = fetcher.get_release(PackageRequest.parse(h))
        assert release.is_directory is True
        assert release.setup_wizard == wizard
        assert release.disclaimer == "Use at your own risk"
        assert release.avatar_hash
        assert release.image_size == 12345
        assert release.compose.first_service().environment == {"PAYOUT": ""}
        assert release.manifest.to_metadata(release.disclaimer)["disclaimer"] == {
            "message": "Use at your own risk",
        }

    def test_directory_without_manifest(self, store, config, index_file) -> None:
        h = store.add_dir({"docker-compose.yml": "services: {}\n"})
        fetcher = _fetcher(store, config, index_file, {})
        with pytest.raises(NotFoundError):
            fetcher.get_release(PackageRequest.parse(h))

    def test_manifest_without_image(self, store, config, index_file) -> None:
        h = store.add_json({"name": MAIN, "version": "0.1.0"})
        fetcher = _fetcher(store, config, index_file, {})
        with pytest.raises(ValidationError):
            fetcher.get_release(PackageRequest.parse(h))

    def test_malformed_manifest(self, store, config, index_file) -> None:
        h = store.add_file("{not json")
        fetcher = _fetcher(store, config, index_file, {})
        with pytest.raises(ValidationError):
            fetcher.get_release(PackageRequest.parse(h))

    def test_name_mismatch(self, store, config, index_file, manifest) -> None:
        h = store.add_json(manifest(MAIN, "1.0.0"))
        fetcher = _fetcher(store, config, index_file, {"other.dnp.dappnode.eth": {"1.0.0": h}})
        with pytest.raises(ValidationError):
            fetcher.get_release(PackageRequest.parse("other.dnp.dappnode.eth@^1.0.0"))

    def test_unknown_package(self, store, config, index_file) -> None:
        fetcher = _fetcher(store, config, index_file, {})
        with pytest.raises(NotFoundError):
            fetcher.get_release(PackageRequest.parse(f"{MAIN}@^1.0.0"))

    def test_no_matching_version(self, store, config, index_file, manifest) -> None:
        h = store.add_json(manifest(MAIN, "0.1.0"))
        fetcher = _fetcher(store, config, index_file, {MAIN: {"0.1.0": h}})
        with pytest.raises(NotFoundError):
            fetcher.get_release(PackageRequest.parse(f"{MAIN}@^2.0.0"))

    def test_invalid_range(self, store, config, index_file, manifest) -> None:
        h = store.add_json(manifest(MAIN, "0.1.0"))
        fetcher = _fetcher(store, config, index_file, {MAIN: {"0.1.0": h}})
        with pytest.raises(ValidationError):
            fetcher.get_release(PackageRequest.parse(f"{MAIN}@^^nope"))

    def test_unknown_hash(self, store, config, index_file) -> None:
        fetcher = _fetcher(store, config, index_file, {})
        with pytest.raises(NotFoundError):
            fetcher.get_release(PackageRequest.parse(UNKNOWN_HASH))


class TestResolve:
    def test_with_dependency(self, store, config, index_file, manifest) -> None:
        dep = store.add_json(manifest(DEP, "0.0.1"))
        main = store.add_json(manifest(MAIN, "0.1.0", {DEP: "^0.0.1"}))
        fetcher = _fetcher(store, config, index_file, {DEP: {"0.0.1": dep}, MAIN: {"0.1.0": main}})

        result = fetcher.resolve(PackageRequest.parse(f"{MAIN}@0.1.0"))
        assert result.root == MAIN
        assert set(result.releases) == {MAIN, DEP}
        assert [(e.parent, e.name, e.selector) for e in result.edges] == [(MAIN, DEP, "^0.0.1")]

    def test_dependency_by_hash(self, store, config, index_file, manifest) -> None:
        dep = store.add_json(manifest(DEP, "0.0.1"))
        main = store.add_json(manifest(MAIN, "0.1.0", {DEP: f"/ipfs/{dep}"}))
        fetcher = _fetcher(store, config, index_file, {})

        result = fetcher.resolve(PackageRequest.parse(main))
        assert result.releases[DEP].req_version == dep

    def test_diamond_fetched_once(self, store, config, index_file, manifest) -> None:
        d = store.add_json(manifest("d", "1.0.0"))
        b = store.add_json(manifest("b", "1.0.0", {"d": "^1.0.0"}))
        c = store.add_json(manifest("c", "1.0.0", {"d": "^1.0.0"}))
        a = store.add_json(manifest("a", "1.0.0", {"b": "^1.0.0", "c": "^1.0.0"}))
        fetcher = _fetcher(store, config, index_file, {
            "a": {"1.0.0": a}, "b": {"1.0.0": b}, "c": {"1.0.0": c}, "d": {"1.0.0": d},
        })

        result = fetcher.resolve(PackageRequest.parse("a@^1.0.0"))
        assert set(result.releases) == {"a", "b", "c", "d"}
        assert store.cat_calls.count(d) == 1
        assert len([e for e in result.edges if e.name == "d"]) == 2

    def test_cycle(self, store, config, index_file, manifest) -> None:
        a = store.add_json(manifest("a", "1.0.0", {"b": "^1.0.0"}))
        b = store.add_json(manifest("b", "1.0.0", {"a": "^1.0.0"}))
        fetcher = _fetcher(store, config, index_file, {"a": {"1.0.0": a}, "b": {"1.0.0": b}})

        with pytest.raises(CyclicDependencyError) as exc:
            fetcher.resolve(PackageRequest.parse("a"))
        assert exc.value.path == ["a", "b", "a"]

    def test_self_dependency(self, store, config, index_file, manifest) -> None:
        a = store.add_json(manifest("a", "1.0.0", {"a": "^1.0.0"}))
        fetcher = _fetcher(store, config, index_file, {"a": {"1.0.0": a}})

        with pytest.raises(CyclicDependencyError) as exc:
            fetcher.resolve(PackageRequest.parse("a"))
        assert exc.value.path == ["a", "a"]

    def test_missing_dependency(self, store, config, index_file, manifest) -> None:
        a = store.add_json(manifest("a", "1.0.0", {"ghost": "^1.0.0"}))
        fetcher = _fetcher(store, config, index_file, {"a": {"1.0.0": a}})

        with pytest.raises(NotFoundError):
            fetcher.resolve(PackageRequest.parse("a"))

    def test_timeout_fails_fast(self, store, config, index_file, manifest) -> None:
        dep = store.add_json(manifest(DEP, "0.0.1"))
        main = store.add_json(manifest(MAIN, "0.1.0", {DEP: "^0.0.1"}))
        fetcher = _fetcher(store, config, index_file, {DEP: {"0.0.1": dep}, MAIN: {"0.1.0": main}})

        original_cat = store.cat

        def slow_cat(content_hash: str) -> bytes:
            if content_hash == dep:
                raise FetchTimeoutError("超时", timeout=config.fetch_timeout)
            return original_cat(content_hash)

        store.cat = slow_cat
        with pytest.raises(FetchTimeoutError):
            fetcher.resolve(PackageRequest.parse(MAIN))
