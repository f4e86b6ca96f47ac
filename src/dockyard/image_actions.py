"""
Image commands: pull, images, build.

Every handler is a pure function of (state, command, ids, settings) and
returns a CommandResult; nothing here mutates the incoming state.
"""

import logging
from typing import List, Optional

from docker.utils import parse_repository_tag

from .config import EngineConfig
from .dockerfile import parse_dockerfile_lines, validate_dockerfile
from .model import CommandResult, EngineContext, ImageRecord, ParsedCommand
from .utils import IdGenerator, create_event, format_size, image_key, pad_end, split_image_ref
from .validation import split_by_severity

logger = logging.getLogger(__name__)

FALLBACK_BUILD_STEPS = [
    "FROM node:18-alpine",
    "WORKDIR /app",
    "COPY package.json .",
    "RUN npm install",
]


def _registry_path(repository: str) -> str:
    return repository if "/" in repository else f"library/{repository}"


def handle_pull(state: EngineContext, cmd: ParsedCommand, ids: IdGenerator,
                settings: Optional[EngineConfig] = None) -> CommandResult:
    settings = settings or EngineConfig()
    if not cmd.args:
        return CommandResult.message("Usage: docker pull <image[:tag]>")

    ref = cmd.args[0]
    repository, explicit_tag = parse_repository_tag(ref)
    implicit = not explicit_tag
    tag = explicit_tag or settings.default_tag
    key = image_key(repository, tag)

    existing = state.images.get(key)
    if existing is not None:
        return CommandResult.message(
            f"{tag}: Pulling from {_registry_path(repository)}",
            f"Digest: {existing.id}",
            f"Status: Image is up to date for {key}",
        )

    layers = [ids.fake_digest() for _ in range(ids.layer_count())]
    image = ImageRecord(
        id=ids.fake_digest(),
        repository=repository,
        tag=tag,
        size=ids.size(settings.pull_size_min, settings.pull_size_max),
        created_at=ids.now(),
        layers=layers,
    )
    logger.debug(f"Pulled {key} ({image.short_id}, {len(layers)} layers)")

    events = [
        create_event(ids, "IMAGE_PULL_STARTED", {"repository": repository, "tag": tag},
                     f"Started pulling image {key}"),
        create_event(ids, "IMAGE_PULL_COMPLETE", {"image": image.to_dict()}, f"Pulled image {key}"),
    ]
    output = [f"Using default tag: {tag}"] if implicit else []
    output.append(f"{tag}: Pulling from {_registry_path(repository)}")
    output.extend(f"{layer.replace('sha256:', '')[:12]}: Pull complete" for layer in layers)
    output.append(f"Digest: {image.id}")
    output.append(f"Status: Downloaded newer image for {key}")

    return CommandResult(
        state_delta={"images": {**state.images, key: image}},
        events=events,
        output=output,
    )


def handle_images(state: EngineContext, cmd: Optional[ParsedCommand] = None) -> CommandResult:
    header = (
        pad_end("REPOSITORY", 20)
        + pad_end("TAG", 12)
        + pad_end("IMAGE ID", 14)
        + pad_end("CREATED", 22)
        + "SIZE"
    )
    rows = [
        pad_end(img.repository, 20)
        + pad_end(img.tag, 12)
        + pad_end(img.short_id, 14)
        + pad_end(img.created_at[:19].replace("T", " "), 22)
        + format_size(img.size)
        for img in state.images.values()
    ]
    return CommandResult.message(header, *rows)


def _build_steps(dockerfile_content: Optional[str]) -> List[str]:
    if dockerfile_content is None:
        return list(FALLBACK_BUILD_STEPS)
    steps = [line.raw for line in parse_dockerfile_lines(dockerfile_content)]
    return steps or list(FALLBACK_BUILD_STEPS)


def handle_build(state: EngineContext, cmd: ParsedCommand, ids: IdGenerator,
                 dockerfile_content: Optional[str] = None,
                 settings: Optional[EngineConfig] = None) -> CommandResult:
    """
    Build an image from the workspace Dockerfile.

    When content is supplied it is validated first: any error aborts the
    build with a BUILD_FAILED event carrying the diagnostics. Warnings are
    printed but do not stop the build.
    """
    settings = settings or EngineConfig()
    tag_flag = cmd.flag_value("t", "tag") or f"unnamed:{settings.default_tag}"
    repository, version = split_image_ref(tag_flag, settings.default_tag)
    full_tag = f"{repository}:{version}"

    output: List[str] = []
    if dockerfile_content is not None:
        errors, warnings = split_by_severity(validate_dockerfile(dockerfile_content))
        output.extend(f"WARNING: [{w.rule_id}] {w.message}" for w in warnings)

        if errors:
            for i, e in enumerate(errors, start=1):
                output.append(f"#{i} ERROR [{e.rule_id}] {e.message}")
                output.append(f"    line {e.line}: {e.explanation}")
            output.extend(["", "failed to solve: Dockerfile validation failed."])
            logger.info(f"Build of {full_tag} rejected with {len(errors)} error(s)")
            return CommandResult(
                events=[create_event(ids, "BUILD_FAILED",
                                     {"tag": full_tag, "errors": [e.to_dict() for e in errors]},
                                     f"Build failed for {full_tag}")],
                output=output,
            )
        if warnings:
            output.append("")

    image = ImageRecord(
        id=ids.fake_digest(),
        repository=repository,
        tag=version,
        size=ids.size(settings.build_size_min, settings.build_size_max),
        created_at=ids.now(),
        layers=[ids.fake_digest() for _ in range(4)],
    )

    steps = _build_steps(dockerfile_content)
    for i, step in enumerate(steps, start=1):
        output.append(f"Step {i}/{len(steps)} : {step}")
        output.append(" ---> Using cache" if i == 1 else f" ---> Running in {ids.fake_id()}")
    output.append(f" ---> {image.short_id}")
    output.append(f"Successfully built {image.short_id}")
    output.append(f"Successfully tagged {full_tag}")

    return CommandResult(
        state_delta={"images": {**state.images, full_tag: image}},
        events=[
            create_event(ids, "BUILD_STEP", {"tag": full_tag, "steps": len(steps)},
                         f"Build step executed for {full_tag}"),
            create_event(ids, "BUILD_COMPLETE", {"image": image.to_dict()},
                         f"Built image {full_tag} successfully"),
        ],
        output=output,
    )
