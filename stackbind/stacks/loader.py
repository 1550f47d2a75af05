"""
Stack directory loader.

Reads a directory of stacks laid out as

    <root>/<stack>/server.yaml   resources per environment, auth, variables
    <root>/<stack>/client.yaml   parentStack / parentEnv and `stacks` per environment

and returns Stack models keyed by stack name.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Union

import yaml
from pydantic import ValidationError

from ..core.exceptions import StackbindError
from .models import Stack

logger = logging.getLogger("stackbind.loader")

SERVER_FILE = "server.yaml"
CLIENT_FILE = "client.yaml"


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise StackbindError(f"Failed to parse {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise StackbindError(f"{path} must contain a mapping")
    return data


def load_stack(stack_dir: Union[str, Path]) -> Stack:
    stack_dir = Path(stack_dir)
    server = _read_yaml(stack_dir / SERVER_FILE)
    client = _read_yaml(stack_dir / CLIENT_FILE)

    try:
        return Stack.model_validate(
            {
                "name": stack_dir.name,
                "parentStack": client.get("parentStack"),
                "parentEnv": client.get("parentEnv"),
                "server": server,
                "client": client.get("stacks") or {},
            }
        )
    except ValidationError as e:
        raise StackbindError(f"Invalid stack definition in {stack_dir}: {e}") from e


def load_stacks(root: Union[str, Path]) -> Dict[str, Stack]:
    """Load every sub-directory holding a server.yaml or client.yaml."""
    root = Path(root)
    stacks = {}
    if not root.is_dir():
        logger.warning(f"Stacks directory {root} does not exist")
        return stacks
    for stack_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        if not (stack_dir / SERVER_FILE).exists() and not (stack_dir / CLIENT_FILE).exists():
            continue
        stacks[stack_dir.name] = load_stack(stack_dir)
    logger.debug(f"Loaded stacks: {', '.join(stacks) or 'none'}")
    return stacks
