import pytest

from dockyard.dockerfile import is_json_string_array, parse_dockerfile_lines, validate_dockerfile

GOOD = """\
FROM node:18-alpine
WORKDIR /app
COPY package.json .
RUN npm install
EXPOSE 3000
CMD ["node", "index.js"]
"""


def rules(content):
    return [d.rule_id for d in validate_dockerfile(content)]


def test_clean_dockerfile_has_no_findings():
    assert validate_dockerfile(GOOD) == []


def test_empty_content_has_no_findings():
    assert validate_dockerfile("") == []
    assert validate_dockerfile("# only a comment\n\n") == []


class TestLineParsing:
    def test_comments_and_blanks_are_skipped_but_numbers_kept(self):
        lines = parse_dockerfile_lines("# base\n\nFROM alpine:3.19\n\nRUN echo hi\n")

        assert [(l.line_number, l.instruction) for l in lines] == [(3, "FROM"), (5, "RUN")]

    def test_continuations_are_joined_at_first_line(self):
        lines = parse_dockerfile_lines("FROM alpine:3.19\nRUN apk add \\\n    curl \\\n    git\n")

        assert len(lines) == 2
        assert lines[1].line_number == 2
        assert lines[1].raw == "RUN apk add curl git"
        assert lines[1].rest == "apk add curl git"

    def test_dangling_continuation_at_eof_is_kept(self):
        lines = parse_dockerfile_lines("FROM alpine:3.19\nRUN echo \\")
        assert [l.instruction for l in lines] == ["FROM", "RUN"]

    def test_instruction_is_upper_cased(self):
        assert parse_dockerfile_lines("from alpine:3.19")[0].instruction == "FROM"


class TestErrors:
    def test_missing_from_is_reported_alone(self):
        diags = validate_dockerfile("RUN echo hi\nCOPPY . /app\n")

        assert [d.rule_id for d in diags] == ["DF-E-001"]
        assert diags[0].line == 1
        assert diags[0].severity == "error"

    def test_arg_only_file_is_missing_from(self):
        assert rules("ARG VERSION=1\n") == ["DF-E-001"]

    def test_from_after_other_instruction(self):
        diags = validate_dockerfile("RUN echo hi\nFROM alpine:3.19\n")

        assert [d.rule_id for d in diags] == ["DF-E-002"]
        assert diags[0].line == 1

    def test_arg_before_from_is_allowed(self):
        assert rules("ARG V=3.19\nFROM alpine:3.19\n") == []

    def test_unknown_instruction_suggests_close_match(self):
        diags = validate_dockerfile("FROM alpine:3.19\nCOPPY . /app\n")

        assert [d.rule_id for d in diags] == ["DF-E-003"]
        assert diags[0].line == 2
        assert diags[0].message == "Unknown instruction: COPPY"
        assert "COPY" in diags[0].fix

    def test_copy_needs_two_arguments(self):
        assert rules("FROM alpine:3.19\nCOPY .\n") == ["DF-E-004"]
        assert rules("FROM alpine:3.19\nCOPY --chown=app . /app\n") == []
        assert rules('FROM alpine:3.19\nCOPY ["a", "b"]\n') == []

    def test_exec_form_must_be_json(self):
        diags = validate_dockerfile("FROM alpine:3.19\nCMD ['npm', 'start']\n")
        assert [d.rule_id for d in diags] == ["DF-E-005"]

    def test_deeply_nested_exec_form_is_an_error(self):
        diags = validate_dockerfile("FROM alpine:3.19\nCMD " + "[" * 100_000 + "\n")
        assert "DF-E-005" in [d.rule_id for d in diags]

    def test_env_needs_key_value(self):
        diags = validate_dockerfile("FROM alpine:3.19\nENV NODE_ENV production\n")

        assert [d.rule_id for d in diags] == ["DF-E-006"]
        assert diags[0].fix == "Change to `ENV NODE_ENV=<value>`"

    @pytest.mark.parametrize("expose,expected", [
        ("EXPOSE 80", []),
        ("EXPOSE 80/tcp 443/udp", []),
        ("EXPOSE 8000-8010", ["DF-E-007"]),
        ("EXPOSE $PORT", ["DF-E-007"]),
        ("EXPOSE 80 http/tcp", ["DF-E-007"]),
        ("EXPOSE http", ["DF-E-007"]),
        ("EXPOSE", ["DF-E-007"]),
    ])
    def test_expose_ports(self, expose, expected):
        assert rules(f"FROM alpine:3.19\n{expose}\n") == expected

    def test_workdir_with_parent_segment(self):
        assert rules("FROM alpine:3.19\nWORKDIR ../app\n") == ["DF-E-008"]
        assert rules("FROM alpine:3.19\nWORKDIR /srv/app..old\n") == []

    def test_errors_do_not_stop_later_checks(self):
        assert rules("FROM alpine:3.19\nCOPY .\nENV A\n") == ["DF-E-004", "DF-E-006"]


class TestWarnings:
    def test_unpinned_and_latest_base_image(self):
        assert rules("FROM node\n") == ["DF-W-001"]
        assert rules("FROM node:latest\n") == ["DF-W-001"]
        assert rules("FROM scratch\n") == []

    def test_digest_pinned_base_image(self):
        assert rules("FROM node@sha256:" + "a" * 64 + "\n") == []

    def test_build_stage_reference_is_not_an_image(self):
        content = "FROM node:18 AS build\nRUN npm ci\nFROM build\n"
        assert rules(content) == []

    def test_platform_option_is_skipped(self):
        assert rules("FROM --platform=linux/amd64 node\n") == ["DF-W-001"]

    def test_three_run_instructions(self):
        diags = validate_dockerfile("FROM alpine:3.19\nRUN a\nRUN b\nRUN c\n")

        assert [d.rule_id for d in diags] == ["DF-W-002"]
        assert diags[0].line == 4
        assert diags[0].severity == "warning"

    def test_add_for_local_copy(self):
        assert rules("FROM alpine:3.19\nADD . /app\n") == ["DF-W-003"]
        assert rules("FROM alpine:3.19\nADD https://example.com/x.txt /x\n") == []
        assert rules("FROM alpine:3.19\nADD app.tar.gz /app\n") == []

    def test_apt_get_without_cleanup(self):
        assert rules("FROM debian:12\nRUN apt-get update && apt-get install -y curl\n") == ["DF-W-005"]
        clean = "FROM debian:12\nRUN apt-get install -y --no-install-recommends curl\n"
        assert rules(clean) == []

    def test_cmd_and_entrypoint_both_shell_form(self):
        content = "FROM alpine:3.19\nENTRYPOINT /bin/run\nCMD serve\n"
        diags = validate_dockerfile(content)

        assert [d.rule_id for d in diags] == ["DF-W-006"]
        assert diags[0].line == 3

    def test_server_cmd_without_expose(self):
        diags = validate_dockerfile("FROM nginx:1.25\nCMD nginx -g 'daemon off;'\n")
        assert [d.rule_id for d in diags] == ["DF-W-007"]

    def test_warnings_and_errors_together(self):
        assert rules("FROM node\nCOPY .\n") == ["DF-W-001", "DF-E-004"]


def test_is_json_string_array():
    assert is_json_string_array('["a", "b"]')
    assert not is_json_string_array("['a']")
    assert not is_json_string_array('["a", 1]')
    assert not is_json_string_array('{"a": "b"}')
    assert not is_json_string_array("[" * 100_000)
