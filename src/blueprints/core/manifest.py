"""
blueprints.toml loading and environment overrides.
"""

import os
import shlex
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .controller import LoopConfig
from .errors import ManifestError

MANIFEST_NAME = "blueprints.toml"
DEFAULT_BLUEPRINTS_DIR = "blueprints"
ENV_BLUEPRINTS_DIR = "BLUEPRINTS_DIR"


@dataclass
class ProjectConfig:
    """Project metadata."""

    name: str = "unnamed"
    version: str = "0.0.0"


@dataclass
class AgentConfig:
    """
    External pass commands.

    Each command is an argv list; a plain string in the manifest is split
    with shell rules. Empty means the pass is not configured.
    """

    reviewer: list[str] = field(default_factory=list)
    builder: list[str] = field(default_factory=list)
    timeout: float | None = None  # seconds per pass, None waits forever


@dataclass
class VerifyConfig:
    """Host verification run before a sign-off is accepted."""

    commands: dict[str, str] = field(default_factory=dict)  # label -> shell command
    unchecked_items: bool = True  # unchecked delivery items block sign-off


@dataclass
class BlueprintsManifest:
    """
    Configuration loaded from blueprints.toml.

    Example::

        [project]
        name = "ledger"

        [blueprints]
        dir = "docs/blueprints"

        [loop]
        max_review_iters = 20
        max_build_iters = 10
        sleep_secs = 0.5

        [agent]
        reviewer = ["my-agent", "--role", "review"]
        builder = "my-agent --role build"

        [verify]
        commands = { lint = "ruff check .", test = "pytest -q" }
    """

    project: ProjectConfig = field(default_factory=ProjectConfig)
    blueprints_dir: str = DEFAULT_BLUEPRINTS_DIR
    loop: LoopConfig = field(default_factory=LoopConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    verify: VerifyConfig = field(default_factory=VerifyConfig)

    def blueprints_path(self, root: Path) -> Path:
        path = Path(self.blueprints_dir)
        return path if path.is_absolute() else root / path


def _argv(value: object, name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, list) and all(isinstance(part, str) for part in value):
        return list(value)
    raise ManifestError(f"[agent] {name} must be a string or a list of strings")


def load_manifest(path: Path) -> BlueprintsManifest:
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ManifestError(f"Invalid TOML in {path}: {e}") from e

    project = data.get("project", {})
    blueprints = data.get("blueprints", {})
    loop_data = data.get("loop", {})
    agent_data = data.get("agent", {})
    verify_data = data.get("verify", {})

    try:
        loop_config = LoopConfig(
            max_review_iters=int(loop_data.get("max_review_iters", LoopConfig.max_review_iters)),
            max_build_iters=int(loop_data.get("max_build_iters", LoopConfig.max_build_iters)),
            loop_sleep=float(loop_data.get("sleep_secs", LoopConfig.loop_sleep)),
        )
    except (TypeError, ValueError) as e:
        raise ManifestError(f"Invalid [loop] value in {path}: {e}") from e

    agent_config = AgentConfig(
        reviewer=_argv(agent_data.get("reviewer"), "reviewer"),
        builder=_argv(agent_data.get("builder"), "builder"),
        timeout=agent_data.get("timeout"),
    )

    commands = verify_data.get("commands", {})
    if not isinstance(commands, dict):
        raise ManifestError("[verify] commands must be a table of label = command")
    verify_config = VerifyConfig(
        commands={str(label): str(command) for label, command in commands.items()},
        unchecked_items=verify_data.get("unchecked_items", True),
    )

    return BlueprintsManifest(
        project=ProjectConfig(
            name=project.get("name", "unnamed"),
            version=project.get("version", "0.0.0"),
        ),
        blueprints_dir=blueprints.get("dir", DEFAULT_BLUEPRINTS_DIR),
        loop=loop_config,
        agent=agent_config,
        verify=verify_config,
    )


def load_settings(root: Path, env: Mapping[str, str] | None = None) -> BlueprintsManifest:
    """
    Load ``root/blueprints.toml`` (defaults when absent) and apply
    environment overrides on top.
    """
    env = os.environ if env is None else env
    path = root / MANIFEST_NAME
    manifest = load_manifest(path) if path.exists() else BlueprintsManifest()

    manifest.loop = LoopConfig.from_env(env, base=manifest.loop)
    if env.get(ENV_BLUEPRINTS_DIR):
        manifest.blueprints_dir = env[ENV_BLUEPRINTS_DIR]
    return manifest
