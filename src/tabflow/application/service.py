from pathlib import Path
from typing import Any

import msgspec

from tabflow.application.port import WorkflowEngine
from tabflow.domain.entity import RunResult, Workflow


def load_workflow(data: dict | Workflow) -> Workflow:
    """Decodes a workflow from a Python dictionary.

    The step graph itself is not validated: unknown step ids only end the run
    when they are reached.

    Args:
        data: The workflow data as a dictionary, in its camelCase wire form.

    Returns:
        A Workflow instance.

    Raises:
        msgspec.ValidationError: If the data does not describe a workflow.
    """
    if isinstance(data, Workflow):
        return data

    return msgspec.convert(data, type=Workflow)


def load_workflow_file(path: str | Path) -> Workflow:
    """Reads a workflow from a ``.json``, ``.yaml`` or ``.yml`` file."""
    path = Path(path)
    content = path.read_bytes()
    suffix = path.suffix.lower()
    if suffix == ".json":
        return msgspec.json.decode(content, type=Workflow)
    if suffix in (".yaml", ".yml"):
        return msgspec.yaml.decode(content, type=Workflow)
    raise ValueError(f"Unsupported workflow file type: {path.suffix!r}")


async def execute_workflow(workflow: dict | Workflow, engine: WorkflowEngine, **options: Any) -> RunResult:
    """Loads the given workflow and runs it on ``engine``, returning its RunResult."""
    return await engine.run(load_workflow(workflow), **options)
