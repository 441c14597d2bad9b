"""
Blueprint directory initialization.
"""

from collections.abc import Callable
from pathlib import Path

from . import ir
from .errors import BlueprintsError
from .manifest import DEFAULT_BLUEPRINTS_DIR, MANIFEST_NAME

ARTIFACT_HEADINGS: dict[ir.Artifact, str] = {
    ir.Artifact.REQUIREMENTS: "# Requirements",
    ir.Artifact.SPEC: "# Spec",
    ir.Artifact.CONTRACTS: "# Contracts",
    ir.Artifact.TEST_VECTORS: "# Test Vectors",
    ir.Artifact.DELIVERY_PLAN: "# Delivery Plan",
    ir.Artifact.LIFECYCLE: "# Lifecycle",
}

MANIFEST_TEMPLATE = """\
[project]
name = "{name}"
version = "0.1.0"

[blueprints]
dir = "{blueprints_dir}"

[loop]
max_review_iters = 100
max_build_iters = 50
sleep_secs = 0.2

[agent]
# reviewer = "my-agent --role review"
# builder = "my-agent --role build"

[verify]
unchecked_items = true
# commands = {{ test = "pytest -q" }}
"""


class InitError(BlueprintsError):
    """Raised when a blueprints directory cannot be initialized."""

    pass


def init_blueprints(
    target_dir: Path,
    project_name: str | None = None,
    blueprints_dir: str = DEFAULT_BLUEPRINTS_DIR,
    allow_existing: bool = False,
    progress_callback: Callable[[str], None] | None = None,
) -> list[Path]:
    """
    Create blueprints.toml and the six artifact files.

    Each artifact starts with a title heading only, which every artifact
    grammar accepts. Existing files are never overwritten.

    Args:
        target_dir: Project root
        project_name: Name recorded in the manifest (defaults to directory name)
        blueprints_dir: Artifact directory, relative to the project root
        allow_existing: Allow an existing blueprints directory
        progress_callback: Optional callback for progress messages

    Returns:
        Files created

    Raises:
        InitError: If the blueprints directory exists and ``allow_existing`` is False
    """

    def log(msg: str) -> None:
        if progress_callback:
            progress_callback(msg)

    if project_name is None:
        project_name = target_dir.resolve().name

    directory = target_dir / blueprints_dir
    if directory.exists() and not allow_existing:
        raise InitError(f"{directory} already exists (pass allow_existing to reuse it)")

    directory.mkdir(parents=True, exist_ok=True)
    created: list[Path] = []

    manifest = target_dir / MANIFEST_NAME
    if not manifest.exists():
        manifest.write_text(
            MANIFEST_TEMPLATE.format(name=project_name, blueprints_dir=blueprints_dir),
            encoding="utf-8",
        )
        created.append(manifest)
        log(f"  Created {manifest.name}")

    for artifact in ir.Artifact:
        path = directory / artifact.filename
        if path.exists():
            log(f"  Kept existing {path.name}")
            continue
        path.write_text(ARTIFACT_HEADINGS[artifact] + "\n", encoding="ascii")
        created.append(path)
        log(f"  Created {path.name}")

    return created
