"""Declaration file loading with validation.

SECURITY: File operations enforce a size limit before reading. Input
validation is performed at the boundary.

File format (resources are registered in file order):

```yaml
resources:
  - security: chef
    publicPorts: [22, 443]
  - security: internal
    groupPorts:
      chef: [8080, "9000-9010"]
  - host: chefserver
    securityGroups: [chef]
    runlist: ""
    options:
      knifeSolo: true
      attributes: dna.json
```
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_DECLARATION_FILE_SIZE_BYTES
from .declarations import Declarations

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when declaration loading or validation fails."""

    pass


# Accepted keys per resource kind, camelCase or snake_case, mapped to the
# keyword argument of the matching Declarations call.
SECURITY_KEYS: dict[str, str] = {
    "publicPorts": "public_ports",
    "public_ports": "public_ports",
    "groupPorts": "group_ports",
    "group_ports": "group_ports",
}
HOST_KEYS: dict[str, str] = {
    "securityGroups": "security_groups",
    "security_groups": "security_groups",
    "runlist": "runlist",
    "options": "options",
}


def _format_validation_error(e: ValidationError) -> str:
    errors = []
    for error in e.errors():
        loc = ".".join(str(x) for x in error["loc"]) or "(root)"
        errors.append(f"  - {loc}: {error['msg']}")
    return "\n".join(errors)


def _map_arguments(entry: dict[str, Any], kind: str, allowed: dict[str, str]) -> dict[str, Any]:
    arguments: dict[str, Any] = {}
    for key, value in entry.items():
        if key == kind:
            continue
        if key not in allowed:
            raise ValueError(f"unknown field '{key}' for {kind}; expected one of {sorted(allowed)}")
        arguments[allowed[key]] = value
    return arguments


def _register(entry: Any, declarations: Declarations) -> str:
    if not isinstance(entry, dict):
        raise ValueError("each resource must be a mapping")

    kinds = [kind for kind in ("security", "host") if kind in entry]
    if len(kinds) != 1:
        raise ValueError("each resource needs exactly one of 'security' or 'host'")
    kind = kinds[0]

    name = entry[kind]
    if not isinstance(name, str) or not name:
        raise ValueError(f"'{kind}' must be a non-empty name")

    if kind == "security":
        arguments = _map_arguments(entry, kind, SECURITY_KEYS)
        return declarations.security(name, **arguments)

    arguments = _map_arguments(entry, kind, HOST_KEYS)
    if "security_groups" not in arguments:
        raise ValueError(f"host '{name}' needs securityGroups")
    return declarations.host(name, **arguments)


def load_declarations(path: Path, declarations: Declarations) -> list[str]:
    """Load a declarations file and register every resource in it.

    Args:
        path: YAML declarations file.
        declarations: Front-end bound to the target graph.

    Returns:
        Registered namespaces, in file order.

    Raises:
        SpecLoadError: If the file cannot be loaded or fails validation.
    """
    if not path.exists():
        raise SpecLoadError(f"Declarations file not found: {path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat declarations file {path}: {e}") from e

    if file_size > MAX_DECLARATION_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Declarations file exceeds maximum size of "
            f"{MAX_DECLARATION_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read declarations file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Declarations file must contain a YAML mapping: {path}")

    unknown = sorted(set(raw_data) - {"resources"})
    if unknown:
        raise SpecLoadError(f"Unknown top-level keys in {path}: {unknown}")

    resources = raw_data.get("resources") or []
    if not isinstance(resources, list):
        raise SpecLoadError(f"'resources' must be a list in {path}")

    namespaces: list[str] = []
    for index, entry in enumerate(resources):
        try:
            namespaces.append(_register(entry, declarations))
        except ValidationError as e:
            raise SpecLoadError(
                f"Validation failed for resources[{index}] in {path}:\n"
                f"{_format_validation_error(e)}"
            ) from e
        except (TypeError, ValueError) as e:
            raise SpecLoadError(f"Invalid resources[{index}] in {path}: {e}") from e

    logger.info(
        "Loaded declarations from %s",
        path,
        extra={"resources": len(namespaces)},
    )
    return namespaces
