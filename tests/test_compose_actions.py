import pytest

from dockyard.compose_actions import (ServiceDef, handle_compose_down, handle_compose_logs, handle_compose_ps,
                                      handle_compose_up, parse_port, parse_services, service_logs, topo_sort)
from dockyard.config import EngineConfig
from dockyard.model import EngineContext, PortMapping
from dockyard.parser import parse_command

STACK = """\
services:
  web:
    image: nginx:1.25
    restart: always
    ports:
      - "8080:80"
    environment:
      MODE: prod
    depends_on:
      - db
  db:
    image: postgres:16
    restart: always
    healthcheck:
      test: pg_isready
"""

CYCLE = """\
services:
  a:
    image: nginx:1.25
    restart: always
    depends_on:
      - b
  b:
    image: nginx:1.25
    restart: always
    depends_on:
      - a
"""


def up(state, ids, raw="docker compose up -d", content=STACK, paths=None, settings=None):
    return handle_compose_up(state, parse_command(raw), ids, content, paths, settings)


def apply(state, result):
    return state.merge(result.state_delta).with_events(result.events)


@pytest.fixture
def state(sm):
    sm.execute("docker pull nginx:1.25")
    sm.execute("docker pull postgres:16")
    return sm.get_snapshot()


@pytest.fixture
def running(state, ids):
    return apply(state, up(state, ids))


class TestUp:
    def test_detached_up_starts_in_dependency_order(self, state, ids):
        result = up(state, ids)

        assert result.output == [
            "[+] Running 2/2",
            " ✔ Container db  Created",
            " ✔ Container db  Started",
            " ✔ Container web  Created",
            " ✔ Container web  Started",
        ]
        assert [e.type for e in result.events] == ["COMPOSE_SERVICE_STARTED"] * 2
        assert [e.payload["service"] for e in result.events] == ["db", "web"]
        assert result.events[1].payload["image_key"] == "nginx:1.25"

        stack = result.state_delta["compose_stacks"]["default"]
        assert stack.service_names == ["db", "web"]
        web = result.state_delta["containers"][stack.container_ids["web"]]
        assert web.status == "running"
        assert web.env == {"MODE": "prod"}
        assert web.image_id == state.images["nginx:1.25"].id
        assert web.ports == [PortMapping(8080, 80)]
        assert result.state_delta["bound_ports"] == {"8080": web.id}

    def test_dependent_service_starts_after_its_dependency(self, state, ids):
        content = """\
services:
  web:
    image: nginx:1.25
    restart: always
  db:
    image: postgres:16
    restart: always
    healthcheck:
      test: pg_isready
    depends_on:
      - web
"""
        result = up(state, ids, content=content)

        assert [e.payload["service"] for e in result.events] == ["web", "db"]
        assert result.state_delta["compose_stacks"]["default"].service_names == ["web", "db"]

    def test_attached_up_prints_logs(self, state, ids):
        result = up(state, ids, raw="docker compose up")

        assert " ✔ Container db  Started" not in result.output
        assert "Attaching to db, web" in result.output
        assert "db  | LOG:  database system is ready to accept connections" in result.output
        assert result.output[-1] == "web  | /docker-entrypoint.sh: Configuration complete; ready for start up"

    def test_up_again_reports_running(self, running, ids):
        result = up(running, ids)

        assert result.output[0] == "[+] Running 2/2"
        assert " ✔ Container db  Running" in result.output
        assert result.events == []

    def test_stopped_service_is_recreated(self, running, ids):
        from dockyard.container_actions import handle_stop

        state = apply(running, handle_stop(running, parse_command("docker stop web"), ids))
        old_id = state.compose_stacks["default"].container_ids["web"]
        result = up(state, ids)

        assert " ✔ Container web  Recreated" in result.output
        assert result.state_delta["containers"][old_id].status == "removed"
        new_id = result.state_delta["compose_stacks"]["default"].container_ids["web"]
        assert new_id != old_id
        assert result.state_delta["bound_ports"] == {"8080": new_id}
        assert [e.payload["service"] for e in result.events] == ["web"]

    def test_missing_images_abort_everything(self, sm, ids):
        sm.execute("docker pull nginx:1.25")
        result = up(sm.get_snapshot(), ids)

        assert result.output == [
            "validating compose file: compose validation failed.",
            "  Service 'db': image 'postgres:16' not found locally. Run 'docker pull postgres:16' first.",
        ]
        assert result.state_delta == {}
        assert result.events == []

    def test_build_service_uses_built_image(self, sm, ids):
        sm.execute("docker build -t api .")
        content = "services:\n  api:\n    build: .\n    restart: always\n"
        result = up(sm.get_snapshot(), ids, content=content, paths=["Dockerfile"])

        assert result.events[0].payload["image_key"] == "api:latest"

    def test_build_service_without_image(self, ids):
        content = "services:\n  api:\n    build: ./api\n    restart: always\n"
        result = up(EngineContext(), ids, content=content, paths=["api/Dockerfile", "api"])

        assert result.output[-1] == ("  Service 'api': no built image found for build context './api'. "
                                     "Run 'docker build -t api ./api' first.")

    def test_validation_errors(self, state, ids):
        content = "services:\n  web:\n    image: nginx:1.25\n    restart: always\n    depends_on:\n      - cache\n"
        result = up(state, ids, content=content)

        assert result.output[0] == "validating compose file: compose validation failed."
        assert result.output[1].startswith("  Error [DC-E-006]: Service 'web'")
        assert result.state_delta == {}
        assert [e.type for e in result.events] == ["COMPOSE_FAILED"]
        assert result.events[0].payload["errors"][0]["rule_id"] == "DC-E-006"

    def test_warnings_do_not_block(self, state, ids):
        content = "services:\n  web:\n    image: nginx:1.25\n"
        result = up(state, ids, content=content)

        assert result.output[0].startswith("WARNING: [DC-W-002]")
        assert result.output[1] == ""
        assert result.output[2] == "[+] Running 1/1"

    def test_cycle(self, state, ids):
        result = up(state, ids, content=CYCLE)

        assert result.output == ["error: circular dependency detected in depends_on"]
        assert result.state_delta == {}

    def test_no_compose_file(self, state, ids):
        result = up(state, ids, content=None)
        assert result.output == ["validating compose file: no compose.yml found in workspace"]

    def test_port_conflict_fails_only_that_service(self, state, ids):
        from dockyard.container_actions import handle_run

        state = apply(state, handle_run(state, parse_command("docker run -d -p 8080:80 --name other nginx:1.25"), ids))
        result = up(state, ids)

        assert result.output[0] == "[+] Running 1/2"
        assert " ✗ Container web  Error" in result.output
        assert "Error: Bind for 0.0.0.0:8080 failed: port is already allocated" in result.output
        stack = result.state_delta["compose_stacks"]["default"]
        assert list(stack.container_ids) == ["db"]
        assert stack.service_names == ["db", "web"]

    def test_name_conflict_with_plain_container(self, state, ids):
        from dockyard.container_actions import handle_run

        state = apply(state, handle_run(state, parse_command("docker run -d --name db nginx:1.25"), ids))
        result = up(state, ids)

        assert " ✗ Container db  Error" in result.output
        assert any(line.startswith('Error: Conflict. The container name "/db"') for line in result.output)

    def test_custom_stack_name(self, state, ids):
        result = up(state, ids, settings=EngineConfig(stack_name="lesson1"))
        assert list(result.state_delta["compose_stacks"]) == ["lesson1"]


class TestDown:
    def test_down_removes_in_reverse_order(self, running, ids):
        result = handle_compose_down(running, parse_command("docker compose down"), ids)

        assert result.output == [
            " Container web  Stopped",
            " Container web  Removed",
            " Container db  Stopped",
            " Container db  Removed",
        ]
        assert [e.payload["service"] for e in result.events] == ["web", "db"]
        assert all(e.type == "COMPOSE_SERVICE_STOPPED" for e in result.events)
        assert result.state_delta["bound_ports"] == {}
        assert result.state_delta["compose_stacks"] == {}
        assert {c.status for c in result.state_delta["containers"].values()} == {"removed"}

    def test_down_leaves_other_containers(self, running, ids):
        from dockyard.container_actions import handle_run

        state = apply(running, handle_run(running, parse_command("docker run -d -p 9000:80 --name side nginx:1.25"), ids))
        result = handle_compose_down(state, parse_command("docker compose down"), ids)
        side = next(c for c in result.state_delta["containers"].values() if c.name == "side")

        assert side.status == "running"
        assert result.state_delta["bound_ports"] == {"9000": side.id}

    def test_down_without_stack(self, state, ids):
        result = handle_compose_down(state, parse_command("docker compose down"), ids)

        assert result.output == ["no compose stack running"]
        assert result.state_delta == {}
        assert result.events == []


class TestPsAndLogs:
    def test_ps(self, running):
        result = handle_compose_ps(running, parse_command("docker compose ps"))

        assert result.output[0].startswith("NAME")
        rows = result.output[1:]
        assert len(rows) == 2
        web = next(r for r in rows if r.startswith("web"))
        assert "nginx:1.25" in web
        assert "Up" in web
        assert "0.0.0.0:8080->80/tcp" in web

    def test_ps_without_anything(self):
        assert handle_compose_ps(EngineContext()).output == ["no compose services running"]

    def test_logs(self, running):
        result = handle_compose_logs(running, parse_command("docker compose logs"))

        assert "web  | /docker-entrypoint.sh: Configuration complete; ready for start up" in result.output
        assert any(line.startswith("db  | LOG:") for line in result.output)

    def test_logs_for_one_service_with_tail(self, running):
        result = handle_compose_logs(running, parse_command("docker compose logs --tail 1 db"))

        assert result.output == ["db  | LOG:  database system is ready to accept connections"]

    def test_follow_flag_keeps_service_filter(self, running):
        result = handle_compose_logs(running, parse_command("docker compose logs -f db"))

        assert result.output[0] == "(Following compose logs. Press Ctrl+C to stop)"
        assert all(line.startswith("db  | ") for line in result.output[1:])
        assert len(result.output) == 3

    def test_logs_without_stack_fall_back_to_containers(self, sm):
        sm.execute("docker pull nginx")
        sm.execute("docker run -d --name solo nginx")
        result = handle_compose_logs(sm.get_snapshot(), parse_command("docker compose logs"))

        assert result.output == ["solo  | solo - started"]


def test_parse_services_and_order():
    services = parse_services(STACK)

    assert list(services) == ["web", "db"]
    assert services["web"].depends_on == ["db"]
    assert services["web"].ports == ["8080:80"]
    assert topo_sort(services) == ["db", "web"]
    assert topo_sort(parse_services(CYCLE)) is None


def test_topo_sort_ignores_unknown_dependencies():
    services = {"a": ServiceDef(name="a", depends_on=["ghost"])}
    assert topo_sort(services) == ["a"]


def test_parse_port():
    assert parse_port("8080:80") == PortMapping(8080, 80)
    assert parse_port("127.0.0.1:8443:443/tcp") == PortMapping(8443, 443)
    assert parse_port("53:53/udp") == PortMapping(53, 53, "udp")
    assert parse_port("80") is None


def test_service_logs_by_image(ids):
    assert service_logs("cache", "redis:7", ids) == ["cache  | * Ready to accept connections"]
    assert service_logs("job", "busybox:1", ids) == ["job  | service started"]
