from dockyard.model import ComposeStack, ContainerRecord, EngineContext, ImageRecord, PortMapping
from dockyard.textual_app import DockyardApp, render_events, render_yard
from dockyard.utils import SeededIdGenerator, create_event


def _state():
    image = ImageRecord(id="sha256:" + "c" * 64, repository="nginx", tag="1.25", size=1_500_000, created_at="")
    web = ContainerRecord(id="w1", name="web", image_id=image.id, status="running", ports=[PortMapping(8080, 80)])
    return EngineContext(
        images={image.key: image},
        containers={web.id: web},
        compose_stacks={"default": ComposeStack(name="default", service_names=["web", "db"],
                                                container_ids={"web": "w1"})},
        bound_ports={"8080": "w1"},
    )


def test_render_yard():
    text = render_yard(_state())

    assert "nginx:1.25" in text
    assert "1.5MB" in text
    assert "8080->80" in text
    assert "COMPOSE [default]" in text
    assert "not started" in text
    assert "PORTS" in text


def test_render_empty_yard():
    text = render_yard(EngineContext())

    assert text.count("(none)") == 2
    assert "PORTS" not in text


def test_render_events():
    ids = SeededIdGenerator(clock="2024-01-01T09:30:15.000Z")
    events = [create_event(ids, "CONTAINER_STARTED", {}, f"Started container c{i}") for i in range(60)]
    text = render_events(EngineContext(event_log=events), limit=5)

    lines = text.splitlines()
    assert len(lines) == 5
    assert lines[0].startswith("09:30:15  CONTAINER_STARTED")
    assert lines[-1].endswith("Started container c59")
    assert render_events(EngineContext()) == "(no events yet)"


def test_app_reads_commands_against_given_workspace(tmp_path):
    app = DockyardApp(EngineContext(), workspace_dir=tmp_path)
    assert app.workspace_dir == tmp_path
    assert not app.command_worker.is_alive()
