import pytest

from dockyard.workspace import MAX_FILE_BYTES, detect_language, load_workspace


@pytest.mark.parametrize("path,language", [
    ("Dockerfile", "dockerfile"),
    ("docker/Dockerfile.dev", "dockerfile"),
    ("api.dockerfile", "dockerfile"),
    ("compose.yml", "yaml"),
    ("k8s/deploy.yaml", "yaml"),
    ("index.js", "javascript"),
    ("entrypoint.sh", "sh"),
    ("README.md", "text"),
])
def test_detect_language(path, language):
    assert detect_language(path) == language


def test_load_workspace(tmp_path):
    (tmp_path / "Dockerfile").write_text("FROM node:18\n")
    (tmp_path / "compose.yml").write_text("services:\n")
    (tmp_path / "api").mkdir()
    (tmp_path / "api" / "index.js").write_text("console.log(1)\n")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "config").write_text("[core]\n")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "x.js").write_text("x\n")
    (tmp_path / "logo.png").write_bytes(b"\x89PNG\xff\xfe\x00")
    (tmp_path / "big.txt").write_text("x" * (MAX_FILE_BYTES + 1))

    files = load_workspace(tmp_path)

    assert sorted(files) == ["Dockerfile", "api/index.js", "compose.yml"]
    assert files["Dockerfile"].content == "FROM node:18\n"
    assert files["Dockerfile"].language == "dockerfile"
    assert files["api/index.js"].language == "javascript"
    assert files["compose.yml"].path == "compose.yml"


def test_empty_and_missing_workspace(tmp_path):
    assert load_workspace(tmp_path) == {}
    assert load_workspace(tmp_path / "missing") is None


def test_file_limit(tmp_path, mocker):
    mocker.patch("dockyard.workspace.MAX_FILES", 2)
    for i in range(5):
        (tmp_path / f"f{i}.txt").write_text(str(i))

    assert len(load_workspace(tmp_path)) == 2
