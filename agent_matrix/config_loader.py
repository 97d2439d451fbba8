"""Loading of matrix definitions from YAML files."""

import asyncio
from pathlib import Path

import yaml

from agent_matrix.models.definition import MatrixDefinition


async def load_matrix_definition(path: Path) -> MatrixDefinition:
    """Load and validate a matrix definition.

    A relative agent jar path is resolved against the file's directory.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not a YAML mapping
        pydantic.ValidationError: If the content does not match the schema

    """
    content = await asyncio.to_thread(path.read_text)
    data = yaml.safe_load(content)
    if not isinstance(data, dict):
        raise ValueError(f"Matrix definition {path} must be a mapping")

    definition = MatrixDefinition.model_validate(data)
    jar = definition.agent.jar
    if not jar.is_absolute():
        resolved = (path.parent / jar).resolve()
        agent = definition.agent.model_copy(update={"jar": resolved})
        definition = definition.model_copy(update={"agent": agent})
    return definition
