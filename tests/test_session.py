import yaml

from dockyard.model import EngineContext
from dockyard.parser import parse_command
from dockyard.session import SESSION_VERSION, clear_session, load_session, save_session


def test_save_and_load(sm, tmp_path):
    sm.execute("docker pull nginx")
    sm.execute("docker run -d -p 8080:80 --name web nginx")
    path = tmp_path / "session.yaml"

    assert save_session(sm.get_snapshot(), path) is True
    assert load_session(path) == sm.get_snapshot()


def test_pending_command_is_not_saved(tmp_path):
    path = tmp_path / "session.yaml"
    save_session(EngineContext(pending_command=parse_command("docker ps")), path)

    document = yaml.safe_load(path.read_text())
    assert document["version"] == SESSION_VERSION
    assert document["engine"]["pending_command"] is None
    assert "saved_at" in document


def test_save_creates_parent_directories(tmp_path):
    path = tmp_path / "nested" / "dir" / "session.yaml"

    assert save_session(EngineContext(), path)
    assert path.exists()
    assert not path.with_suffix(".yaml.tmp").exists()


def test_missing_file(tmp_path):
    assert load_session(tmp_path / "nope.yaml") is None


def test_invalid_yaml(tmp_path):
    path = tmp_path / "session.yaml"
    path.write_text("engine: [unclosed\n")
    assert load_session(path) is None


def test_wrong_version(tmp_path):
    path = tmp_path / "session.yaml"
    path.write_text(yaml.safe_dump({"version": 99, "engine": {}}))
    assert load_session(path) is None


def test_malformed_state(tmp_path):
    path = tmp_path / "session.yaml"
    path.write_text(yaml.safe_dump({"version": SESSION_VERSION, "engine": {"bound_ports": ["80"]}}))
    assert load_session(path) is None


def test_clear_session(tmp_path):
    path = tmp_path / "session.yaml"
    save_session(EngineContext(), path)

    clear_session(path)
    assert not path.exists()
    clear_session(path)
