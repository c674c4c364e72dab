"""compose 编辑 / 合并 / 仓库测试"""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from dnpmanager.core.compose import (
    ComposeEditor,
    ComposeRepository,
    get_settings,
    merge,
)
from dnpmanager.core.compose.editor import (
    DEFAULT_ENVIRONMENT_LABEL,
    VERSION_LABEL,
    read_defaults_from_labels,
)
from dnpmanager.core.compose.fields import parse_port, parse_volume
from dnpmanager.core.compose.merge import named_volume_mountpoint
from dnpmanager.core.exceptions import ComposeParseError

NAME = "main.dnp.dappnode.eth"


def _template(version: str = "0.1.0", **image) -> ComposeEditor:
    image.setdefault("environment", ["A=1", "B=2"])
    image.setdefault("volumes", ["data:/data"])
    image.setdefault("ports", ["1111:1111"])
    return ComposeEditor.from_image(NAME, version, image)


class TestFields:
    def test_port_short_syntax(self) -> None:
        p = parse_port("8080:80/udp")
        assert (p.container, p.host, p.protocol) == ("80", "8080", "UDP")
        assert p.key == "80/UDP"
        assert p.to_compose() == "8080:80/udp"

    def test_port_long_syntax(self) -> None:
        p = parse_port({"target": 80, "published": 8080})
        assert p.key == "80/TCP"
        assert p.to_compose() == "8080:80"

    def test_volume_kinds(self) -> None:
        assert parse_volume("data:/data").is_named
        assert parse_volume("/host:/data").is_bind
        v = parse_volume("data:/data:ro")
        assert v.mode == "ro"
        assert v.to_compose() == "data:/data:ro"


class TestComposeEditor:
    def test_from_image(self) -> None:
        c = ComposeEditor.from_image(NAME, "0.1.0", {
            "environment": ["A=1"],
            "volumes": ["data:/data"],
            "external_vol": ["depvol:/ext"],
            "ports": ["1111:1111"],
            "restart": "always",
        })
        svc = c.output()["services"][NAME]
        assert svc["container_name"] == f"DNP_{NAME}"
        assert svc["image"] == f"{NAME}:0.1.0"
        assert svc["environment"] == {"A": "1"}
        assert svc["volumes"] == ["data:/data", "depvol:/ext"]
        assert svc["restart"] == "always"
        assert c.volumes == {"data": {}, "depvol": {"external": True}}
        assert c.external_volumes() == [(NAME, "depvol")]

    def test_parse_invalid(self) -> None:
        with pytest.raises(ComposeParseError):
            ComposeEditor.parse("services: [")
        with pytest.raises(ComposeParseError):
            ComposeEditor.parse("services: 1")
        with pytest.raises(ComposeParseError):
            ComposeEditor.parse("- a\n- b\n")

    @pytest.mark.parametrize("text", [
        f"services:\n  {NAME}:\n",
        f"services:\n  {NAME}:\n    labels: 7\n",
        f"services:\n  {NAME}:\n    environment: 5\n",
        f"services:\n  {NAME}:\n    ports: 8080\n",
        f"services:\n  {NAME}:\n    volumes: [1]\n",
        f"services:\n  {NAME}: {{}}\nvolumes: [a]\n",
    ])
    def test_parse_bad_shape(self, text: str) -> None:
        with pytest.raises(ComposeParseError):
            ComposeEditor.parse(text)

    def test_package_metadata(self) -> None:
        c = _template()
        c.set_package_metadata("0.1.0", {"dep.dnp.dappnode.eth": "^0.0.1"}, origin="Qmabc")
        assert c.package_version() == "0.1.0"
        assert c.package_dependencies() == {"dep.dnp.dappnode.eth": "^0.0.1"}
        assert c.package_origin() == "Qmabc"

    def test_version_falls_back_to_image_tag(self) -> None:
        c = _template("0.3.0")
        assert c.package_version() == "0.3.0"

    def test_bad_default_label(self) -> None:
        with pytest.raises(ComposeParseError):
            read_defaults_from_labels({DEFAULT_ENVIRONMENT_LABEL: "{not json"})

    def test_apply_global_env_updates_default(self) -> None:
        key = "_DAPPNODE_GLOBAL_DOMAIN"
        c = merge(_template(environment=[f"{key}=old.example"]))
        assert c.references_env(key)
        assert c.apply_global_env(key, "new.example") is True

        svc = c.first_service()
        assert svc.environment[key] == "new.example"
        # 旧值为默认值时，默认值标签同步更新
        assert svc.defaults().environment[key] == "new.example"

    def test_apply_global_env_bool(self) -> None:
        key = "_DAPPNODE_GLOBAL_UPNP_AVAILABLE"
        c = merge(_template(environment=[f"{key}=false"]))
        c.apply_global_env(key, True)
        assert c.first_service().environment[key] == "true"

    def test_apply_global_env_unreferenced(self) -> None:
        c = merge(_template())
        assert c.apply_global_env("_DAPPNODE_GLOBAL_DOMAIN", "x") is False


class TestMerge:
    def test_first_install_stamps_defaults(self) -> None:
        merged = merge(_template())
        defaults = merged.first_service().defaults()
        assert defaults.environment == {"A": "1", "B": "2"}
        assert defaults.ports == ["1111:1111"]
        assert defaults.volumes == ["data:/data"]

    def test_does_not_mutate_inputs(self) -> None:
        template = _template()
        before = template.output()
        merge(template, merge(_template("0.0.1")))
        assert template.output() == before

    def test_user_env_preserved(self) -> None:
        previous = merge(_template("0.0.1", environment=["A=0"]))
        svc = previous.first_service()
        svc.set_environment({"A": "custom"})

        merged = merge(_template(), previous)
        assert merged.first_service().environment == {"A": "custom", "B": "2"}

    def test_default_env_follows_template(self) -> None:
        previous = merge(_template("0.0.1", environment=["A=0"]))
        merged = merge(_template(), previous)
        assert merged.first_service().environment == {"A": "1", "B": "2"}

    def test_user_port_preserved(self) -> None:
        previous = merge(_template("0.0.1"))
        previous.first_service().set_ports([parse_port("2222:1111")])

        merged = merge(_template(), previous)
        assert [p.to_compose() for p in merged.first_service().ports] == ["2222:1111"]
        assert get_settings(merged)["portMappings"] == {"1111/TCP": "2222"}

    def test_new_defaults_restamped(self) -> None:
        previous = merge(_template("0.0.1", environment=["A=0"]))
        merged = merge(_template(), previous)
        labels = merged.first_service().labels
        assert read_defaults_from_labels(labels).environment == {"A": "1", "B": "2"}

    def test_user_labels_kept(self) -> None:
        previous = merge(_template("0.0.1"))
        svc = previous.first_service()
        svc.set_labels({**svc.labels, "traefik.enable": "true", VERSION_LABEL: "0.0.1"})

        merged = merge(_template(), previous)
        labels = merged.first_service().labels
        assert labels["traefik.enable"] == "true"
        assert VERSION_LABEL not in labels

    def test_legacy_compose_without_labels(self) -> None:
        previous = ComposeEditor({
            "version": "3.4",
            "services": {NAME: {
                "image": f"{NAME}:0.0.1",
                "environment": ["A=legacy"],
                "volumes": ["/host/path:/data"],
            }},
        })
        merged = merge(_template(), previous)
        svc = merged.first_service()
        assert svc.environment == {"A": "legacy", "B": "2"}
        assert [v.to_compose() for v in svc.volumes] == ["/host/path:/data"]

        settings = get_settings(merged, _template())
        assert settings["legacyBindVolumes"] == {"data": "/host/path"}
        assert settings["namedVolumeMountpoints"] == {"data": ""}

    def test_extra_bind_without_template_volume(self) -> None:
        previous = merge(_template("0.0.1"))
        svc = previous.first_service()
        svc.set_volumes([*svc.volumes, parse_volume("/var/log:/logs")])

        merged = merge(_template(), previous)
        settings = get_settings(merged, _template())
        assert settings["legacyBindVolumes"] == {"/logs": "/var/log"}

    def test_named_volume_mountpoint_kept(self) -> None:
        previous = merge(_template("0.0.1"))
        previous.set_volumes({"data": {
            "driver_opts": {"type": "none", "o": "bind", "device": f"/mnt/usb/dnp-volumes/{NAME}/data"},
        }})
        merged = merge(_template(), previous)
        settings = get_settings(merged, _template())
        assert settings["namedVolumeMountpoints"] == {"data": "/mnt/usb"}

    def test_settings_empty_sections_omitted(self) -> None:
        c = ComposeEditor({"version": "3.5", "services": {"a": {"image": "a:1"}}})
        assert get_settings(c) == {}

    def test_mountpoint_requires_bind(self) -> None:
        assert named_volume_mountpoint({"driver_opts": {"device": "/mnt/x"}}) == ""
        assert named_volume_mountpoint(None) == ""


class TestComposeRepository:
    def test_write_read_and_list(self, tmp_path: Path) -> None:
        repo = ComposeRepository(tmp_path)
        c = merge(_template())
        c.set_package_metadata("0.1.0", {"dep.dnp.dappnode.eth": "^0.0.1"})
        repo.write(NAME, c)

        assert repo.exists(NAME)
        assert repo.list_names() == [NAME]
        pkg = repo.list_installed()[NAME]
        assert pkg.version == "0.1.0"
        assert pkg.dependencies == {"dep.dnp.dappnode.eth": "^0.0.1"}

    def test_invalid_name(self, tmp_path: Path) -> None:
        repo = ComposeRepository(tmp_path)
        with pytest.raises(ValueError):
            repo.compose_path("../escape")

    def test_update_skips_when_unchanged(self, tmp_path: Path) -> None:
        repo = ComposeRepository(tmp_path)
        repo.write(NAME, merge(_template()))
        mtime = repo.compose_path(NAME).stat().st_mtime_ns

        assert repo.update(NAME, lambda c: False) is False
        assert repo.compose_path(NAME).stat().st_mtime_ns == mtime
        assert repo.update("missing.dnp.dappnode.eth", lambda c: True) is False

    def test_corrupt_compose_skipped(self, tmp_path: Path) -> None:
        repo = ComposeRepository(tmp_path)
        repo.write(NAME, merge(_template()))
        broken = tmp_path / "broken.dnp.dappnode.eth"
        broken.mkdir()
        (broken / "docker-compose.yml").write_text("services: [", encoding="utf-8")

        assert set(repo.list_names()) == {NAME, "broken.dnp.dappnode.eth"}
        assert list(repo.list_installed()) == [NAME]

    def test_bad_shape_compose_skipped(self, tmp_path: Path) -> None:
        repo = ComposeRepository(tmp_path)
        repo.write(NAME, merge(_template()))
        broken = tmp_path / "broken.dnp.dappnode.eth"
        broken.mkdir()
        (broken / "docker-compose.yml").write_text(
            "services:\n  broken.dnp.dappnode.eth:\n    labels: 7\n", encoding="utf-8",
        )

        assert list(repo.list_installed()) == [NAME]
        with pytest.raises(ComposeParseError):
            repo.read("broken.dnp.dappnode.eth")

    def test_failed_write_keeps_old_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        repo = ComposeRepository(tmp_path)
        repo.write(NAME, merge(_template()))
        path = repo.compose_path(NAME)
        before = path.read_text(encoding="utf-8")

        def failing_replace(src, dst):  # type: ignore[no-untyped-def]
            raise OSError("disk full")

        monkeypatch.setattr("os.replace", failing_replace)
        with pytest.raises(OSError):
            repo.write(NAME, merge(_template("0.2.0")))

        assert path.read_text(encoding="utf-8") == before
        assert list(path.parent.glob(".docker-compose.yml.*.tmp")) == []

    def test_concurrent_updates_serialized(self, tmp_path: Path) -> None:
        repo = ComposeRepository(tmp_path)
        repo.write(NAME, merge(_template(environment=[])))

        def _add(i: int) -> None:
            def mutate(c: ComposeEditor) -> bool:
                svc = c.first_service()
                svc.set_environment({**svc.environment, f"K{i}": str(i)})
                return True
            repo.update(NAME, mutate)

        threads = [threading.Thread(target=_add, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        env = repo.read(NAME).first_service().environment
        assert env == {f"K{i}": str(i) for i in range(10)}
