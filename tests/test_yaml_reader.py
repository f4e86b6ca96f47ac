from dockyard.yaml_reader import as_array, as_doc, as_string, parse_scalar, parse_yaml

COMPOSE = """\
services:
  web:
    image: nginx:1.25
    ports:
      - "8080:80"
      - 443:443
    restart: always
  db:
    image: postgres:16
"""


def test_nested_mappings_and_sequences():
    doc, error = parse_yaml(COMPOSE)

    assert error is None
    web = doc["services"]["web"]
    assert web["image"] == "nginx:1.25"
    assert web["ports"] == ["8080:80", "443:443"]
    assert web["restart"] == "always"
    assert doc["services"]["db"] == {"image": "postgres:16"}


def test_scalar_coercion():
    assert parse_scalar("true") is True
    assert parse_scalar("false") is False
    assert parse_scalar("null") is None
    assert parse_scalar("~") is None
    assert parse_scalar("42") == 42
    assert parse_scalar("1.5") == 1.5
    assert parse_scalar("'quoted'") == "quoted"
    assert parse_scalar('"8080:80"') == "8080:80"
    assert parse_scalar("plain text") == "plain text"


def test_trailing_comment_is_stripped():
    doc, _ = parse_yaml("# header\nkey: value # note\n")
    assert doc == {"key": "value"}


def test_sequence_at_same_indent_as_key():
    doc, error = parse_yaml("depends_on:\n- db\n- cache\n")

    assert error is None
    assert doc["depends_on"] == ["db", "cache"]


def test_tab_indentation_is_an_error():
    doc, error = parse_yaml("services:\n\tweb:\n")

    assert doc is None
    assert error.line == 2
    assert "\\t" in error.message


def test_duplicate_key_is_an_error():
    doc, error = parse_yaml("services:\n  web:\n    image: a\n    image: b\n")

    assert doc is None
    assert error.line == 4
    assert error.message == "duplicate key 'image'"


def test_same_key_in_different_mappings_is_fine():
    _, error = parse_yaml("a:\n  image: x\nb:\n  image: y\n")
    assert error is None


def test_empty_content():
    assert parse_yaml("") == ({}, None)


def test_accessors():
    assert as_doc({"a": 1}) == {"a": 1}
    assert as_doc([1]) is None
    assert as_array([1]) == [1]
    assert as_array("x") is None
    assert as_string("x") == "x"
    assert as_string(80) == "80"
    assert as_string(True) is None
    assert as_string(None) is None
