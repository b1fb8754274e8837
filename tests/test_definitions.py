import json
import textwrap

import pytest
import yaml

from definitions import DefinitionIndex, build_definition, build_extension, load_definitions
from error_handler import ConfigurationError
from extensions.base import EXTENSION_REGISTRY, register_extension
from main import main
from modules.config import DefinitionConfig, get_device_options, parse_config
from yaml_loader import load_yaml_config

CONFIG = textwrap.dedent("""
    log_level: DEBUG
    log_dir: null
    options:
      defaults:
        transition: 1
      devices:
        "00:11:22:33:44:55:66:AA":
          transition: 0
          occupancy_timeout: 30
    definitions:
      - zigbee_model: ["TH01", "TH01-EU"]
        model: TH01
        vendor: Acme
        description: Climate sensor
        extend:
          - temperature
          - humidity
          - battery:
              voltage: true
      - zigbee_model: ["PIR1"]
        model: PIR1
        vendor: Acme
        extend:
          - ias_zone_alarm:
              zone_type: occupancy
              zone_attributes: [alarm_1, tamper]
              alarm_timeout: true
""")


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG)
    return path


class TestYamlLoader:
    def test_loads_mapping(self, config_file):
        assert load_yaml_config(config_file)["log_level"] == "DEBUG"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_yaml_config(tmp_path / "missing.yaml")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml_config(path) == {}

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(yaml.YAMLError):
            load_yaml_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("a: [1, 2\n")
        with pytest.raises(yaml.YAMLError):
            load_yaml_config(path)


class TestConfig:
    def test_parse(self, config_file):
        config = parse_config(load_yaml_config(config_file))
        assert config.log_level == "DEBUG"
        assert config.log_dir is None
        assert len(config.definitions) == 2
        assert config.definitions[1].description == ""

    def test_device_options_override_defaults(self, config_file):
        config = parse_config(load_yaml_config(config_file))
        options = get_device_options(config, "00:11:22:33:44:55:66:aa")
        assert options == {"transition": 0, "occupancy_timeout": 30}
        assert get_device_options(config, "ff:ff:ff:ff:ff:ff:ff:ff") == {"transition": 1}

    def test_device_options_are_read_only(self, config_file):
        options = get_device_options(parse_config(load_yaml_config(config_file)), "00:11:22:33:44:55:66:aa")
        with pytest.raises(TypeError):
            options["transition"] = 5

    def test_invalid_log_level(self):
        with pytest.raises(ConfigurationError):
            parse_config({"log_level": "LOUD"})

    def test_extend_entry_with_two_names(self):
        with pytest.raises(ConfigurationError):
            parse_config({"definitions": [{
                "zigbee_model": ["X"], "model": "X", "vendor": "Acme",
                "extend": [{"temperature": {}, "humidity": {}}],
            }]})


class TestBuildExtension:
    def test_bare_name(self):
        bundle = build_extension("temperature")
        assert bundle.exposes[0].name == "temperature"

    def test_name_with_arguments(self):
        bundle = build_extension({"on_off": {"power_on_behavior": False}})
        assert len(bundle.exposes) == 1

    def test_null_arguments(self):
        build_extension({"identify": None})

    def test_unknown_extension(self):
        with pytest.raises(ConfigurationError):
            build_extension("teleport")

    def test_unexpected_keyword(self):
        with pytest.raises(ConfigurationError):
            build_extension({"identify": {"duration": 5}})

    def test_missing_argument(self):
        with pytest.raises(ConfigurationError, match="IgnoreClusterReportArgs"):
            build_extension("ignore_cluster_report")

    def test_builder_bugs_are_not_reported_as_bad_arguments(self, monkeypatch):
        def broken(**kwargs):
            return len(None)

        monkeypatch.setitem(EXTENSION_REGISTRY, "broken", broken)
        with pytest.raises(TypeError):
            build_extension({"broken": {}})

    def test_registering_a_name_twice_fails(self):
        assert "temperature" in EXTENSION_REGISTRY
        with pytest.raises(ConfigurationError):
            register_extension("temperature")(lambda: None)


class TestDefinitions:
    def test_build_definition_prefixes_errors(self):
        config = DefinitionConfig(zigbee_model=["X"], model="X1", vendor="Acme", extend=["temperature", "temperature"])
        with pytest.raises(ConfigurationError, match="Acme X1"):
            build_definition(config)

    def test_index_lookup_by_zigbee_model(self, config_file):
        index = load_definitions(parse_config(load_yaml_config(config_file)).definitions)
        assert len(index) == 2
        assert index.find("TH01-EU").model == "TH01"
        assert index.find("unknown") is None
        assert index.find(None) is None
        assert [d.model for d in index] == ["TH01", "PIR1"]

    def test_duplicate_zigbee_model(self):
        definition = build_definition(DefinitionConfig(zigbee_model=["X"], model="X", vendor="Acme"))
        with pytest.raises(ConfigurationError):
            DefinitionIndex([definition, definition])


class TestMain:
    def test_prints_descriptors(self, config_file, capsys):
        assert main(["--config", str(config_file), "--model", "PIR1"]) == 0
        descriptors = json.loads(capsys.readouterr().out)
        assert [d["model"] for d in descriptors] == ["PIR1"]
        assert [e["name"] for e in descriptors[0]["exposes"]] == ["occupancy", "tamper"]

    def test_missing_config(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "nope.yaml")]) == 2

    def test_invalid_definition(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(textwrap.dedent("""
            log_dir: null
            definitions:
              - zigbee_model: ["X"]
                model: X
                vendor: Acme
                extend: [teleport]
        """))
        assert main(["--config", str(path)]) == 1
