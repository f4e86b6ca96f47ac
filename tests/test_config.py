import yaml

from dockyard.config import AppConfig, ConfigManager


def write(tmp_path, data):
    (tmp_path / "config.yaml").write_text(yaml.safe_dump(data) if not isinstance(data, str) else data)


def test_defaults_without_file(tmp_path):
    cm = ConfigManager(config_dir=tmp_path)

    assert cm.get_config() == AppConfig()
    assert cm.get_log_level() == "INFO"
    assert cm.get_custom_log_path() is None
    assert cm.get_engine_config().default_tag == "latest"
    assert not (tmp_path / "config.yaml").exists()


def test_user_values_are_merged(tmp_path):
    write(tmp_path, {
        "logging": {"level": "debug", "file_path": "/tmp/dy.log"},
        "engine": {"default_tag": "stable", "seed": 42, "stack_name": "lesson"},
        "ui": {"workspace_dir": "~/lessons", "show_event_log": False},
    })
    cm = ConfigManager(config_dir=tmp_path)
    cfg = cm.get_config()

    assert cm.get_log_level() == "DEBUG"
    assert cm.get_custom_log_path() == "/tmp/dy.log"
    assert cfg.engine.default_tag == "stable"
    assert cfg.engine.seed == 42
    assert cfg.engine.stack_name == "lesson"
    assert cfg.engine.pull_size_min == 10_000_000
    assert cfg.ui.show_event_log is False
    assert cm.get_workspace_dir().name == "lessons"
    assert "~" not in str(cm.get_workspace_dir())


def test_wrong_types_and_unknown_keys_are_ignored(tmp_path):
    write(tmp_path, {"engine": {"pull_size_min": "big", "colour": "red"}, "ui": "not a section"})
    cfg = ConfigManager(config_dir=tmp_path).get_config()

    assert cfg.engine.pull_size_min == 10_000_000
    assert not hasattr(cfg.engine, "colour")
    assert cfg.ui.max_output_lines == 1000


def test_invalid_file_falls_back_to_defaults(tmp_path):
    write(tmp_path, "- just\n- a list\n")
    assert ConfigManager(config_dir=tmp_path).get_config() == AppConfig()

    write(tmp_path, "engine: [broken\n")
    assert ConfigManager(config_dir=tmp_path).get_config() == AppConfig()


def test_save_round_trip(tmp_path):
    cm = ConfigManager(config_dir=tmp_path / "cfg")
    cm.get_config().engine.seed = 7
    cm.get_config().ui.max_output_lines = 50
    cm.save_config()

    reloaded = ConfigManager(config_dir=tmp_path / "cfg").get_config()
    assert reloaded.engine.seed == 7
    assert reloaded.ui.max_output_lines == 50
