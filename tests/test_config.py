from pathlib import Path

import pytest

from sortie.config import _deep_merge, load_config, resolve_flight_config, resolve_provider
from sortie.core.exceptions import ConfigurationError
from sortie.flight import FlightConfig
from sortie.providers.brightbox.config import Brightbox
from sortie.providers.digitalocean.config import DigitalOcean
from sortie.providers.hetzner.config import Hetzner

pytestmark = [pytest.mark.unit]


def write(directory: Path, text: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "sortie.toml"
    path.write_text(text)
    return path


class TestDeepMerge:
    def test_shallow_override(self):
        assert _deep_merge({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}

    def test_nested_merge(self):
        base = {"providers": {"bbx": {"type": "brightbox", "zone": "gb1-a"}}}
        override = {"providers": {"bbx": {"zone": "gb1-b"}}}
        assert _deep_merge(base, override) == {
            "providers": {"bbx": {"type": "brightbox", "zone": "gb1-b"}}
        }

    def test_does_not_mutate_base(self):
        base = {"flight": {"ssh_user": "core"}}
        _deep_merge(base, {"flight": {"ssh_user": "root"}})
        assert base == {"flight": {"ssh_user": "core"}}


class TestLoadConfig:
    def test_no_files_returns_empty_sections(self, tmp_path: Path):
        result = load_config(project_dir=tmp_path / "nope", global_path=tmp_path / "nope.toml")
        assert result == {"providers": {}, "flight": {}}

    def test_project_overrides_global(self, tmp_path: Path):
        global_toml = tmp_path / "defaults.toml"
        global_toml.write_text('[flight]\nssh_user = "core"\nssh_retries = 5\n')
        write(tmp_path / "project", '[flight]\nssh_retries = 9\n')

        result = load_config(project_dir=tmp_path / "project", global_path=global_toml)

        assert result["flight"] == {"ssh_user": "core", "ssh_retries": 9}

    def test_invalid_toml(self, tmp_path: Path):
        write(tmp_path, "[flight\n")
        with pytest.raises(ConfigurationError, match="Invalid TOML"):
            load_config(project_dir=tmp_path, global_path=tmp_path / "none.toml")


class TestResolveProvider:
    @pytest.mark.parametrize(
        "body, expected",
        [
            (
                'type = "brightbox"\nimage = "img-abcde"\nzone = "gb1-a"\n',
                Brightbox(image="img-abcde", zone="gb1-a"),
            ),
            (
                'type = "digitalocean"\nregion = "ams3"\nimage = "123"\n',
                DigitalOcean(region="ams3", image="123"),
            ),
            (
                'type = "hetzner"\nimage = "flatcar"\nlocation = "nbg1"\n',
                Hetzner(image="flatcar", location="nbg1"),
            ),
        ],
    )
    def test_builds_config(self, tmp_path: Path, body: str, expected):
        write(tmp_path, f"[providers.cloud]\n{body}")
        config = resolve_provider("cloud", project_dir=tmp_path, global_path=tmp_path / "none.toml")
        assert config == expected

    def test_unknown_name(self, tmp_path: Path):
        write(tmp_path, '[providers.bbx]\ntype = "brightbox"\n')
        with pytest.raises(ConfigurationError, match="Available: bbx"):
            resolve_provider("other", project_dir=tmp_path, global_path=tmp_path / "none.toml")

    def test_missing_type(self, tmp_path: Path):
        write(tmp_path, '[providers.bbx]\nimage = "img-1"\n')
        with pytest.raises(ConfigurationError, match="missing 'type'"):
            resolve_provider("bbx", project_dir=tmp_path, global_path=tmp_path / "none.toml")

    def test_unknown_type(self, tmp_path: Path):
        write(tmp_path, '[providers.os]\ntype = "openstack"\n')
        with pytest.raises(ConfigurationError, match="Unknown provider type"):
            resolve_provider("os", project_dir=tmp_path, global_path=tmp_path / "none.toml")

    def test_unknown_field(self, tmp_path: Path):
        write(tmp_path, '[providers.do]\ntype = "digitalocean"\nflavor = "big"\n')
        with pytest.raises(ConfigurationError, match="flavor"):
            resolve_provider("do", project_dir=tmp_path, global_path=tmp_path / "none.toml")


class TestResolveFlightConfig:
    def test_defaults_when_absent(self, tmp_path: Path):
        config = resolve_flight_config(project_dir=tmp_path, global_path=tmp_path / "none.toml")
        assert config == FlightConfig()

    def test_paths_are_converted(self, tmp_path: Path):
        write(
            tmp_path,
            '[flight]\nbase_name = "smoke"\noutput_dir = "/tmp/runs"\n'
            'ssh_key_path = "/tmp/id"\ncheck_os_release = "flatcar"\n',
        )

        config = resolve_flight_config(project_dir=tmp_path, global_path=tmp_path / "none.toml")

        assert config.base_name == "smoke"
        assert config.output_dir == Path("/tmp/runs")
        assert config.ssh_key_path == Path("/tmp/id")
        assert config.check_os_release == "flatcar"

    def test_unknown_field(self, tmp_path: Path):
        write(tmp_path, "[flight]\nnodes = 3\n")
        with pytest.raises(ConfigurationError, match="nodes"):
            resolve_flight_config(project_dir=tmp_path, global_path=tmp_path / "none.toml")
