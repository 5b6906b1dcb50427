"""Credential profiles.

A profile names the AWS account/region to work in and the launch
defaults (key pair, image, instance size) used when a host declaration
leaves them unset. Profiles live in one YAML file:

```yaml
staging:
  awsProfile: acme-staging
  region: us-east-1
  keyName: deploy
  imageId: ami-0abcdef1234567890
  size: t3.small
```

The selected profile is resolved once at startup and passed explicitly
into the provider and lifecycle manager.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import yaml
from pydantic import BaseModel, Field, ValidationError

from .config import MAX_PROFILES_FILE_SIZE_BYTES

logger = logging.getLogger(__name__)


class CredentialMissingError(Exception):
    """Raised when no usable credential profile is available.

    Fatal at startup: no operation runs without a profile.
    """

    pass


@dataclass(frozen=True)
class HostDefaults:
    """Launch settings used when a host declaration leaves them unset."""

    key_name: str | None = None
    image_id: str | None = None
    size: str | None = None


class Profile(BaseModel):
    """One named credential profile."""

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1)]
    aws_profile: str | None = Field(None, alias="awsProfile")
    region: str | None = None
    key_name: str | None = Field(None, alias="keyName")
    image_id: str | None = Field(None, alias="imageId")
    size: str | None = None

    def host_defaults(self) -> HostDefaults:
        return HostDefaults(key_name=self.key_name, image_id=self.image_id, size=self.size)


def load_profile(path: Path, name: str) -> Profile:
    """Load profile ``name`` from the profiles file at ``path``.

    Raises:
        CredentialMissingError: If the file or the profile is missing or invalid.
    """
    if not path.exists():
        raise CredentialMissingError(f"Profiles file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise CredentialMissingError(f"Failed to stat profiles file {path}: {e}") from e

    if file_size > MAX_PROFILES_FILE_SIZE_BYTES:
        raise CredentialMissingError(
            f"Profiles file exceeds maximum size of {MAX_PROFILES_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        raw_data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise CredentialMissingError(f"Failed to read profiles file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise CredentialMissingError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise CredentialMissingError(f"Profiles file must contain a YAML mapping: {path}")

    entry = raw_data.get(name)
    if entry is None:
        available = sorted(str(key) for key in raw_data)
        raise CredentialMissingError(
            f"Profile '{name}' not found in {path}. Available profiles: {available}"
        )
    if not isinstance(entry, dict):
        raise CredentialMissingError(f"Profile '{name}' must be a mapping in {path}")

    try:
        profile = Profile.model_validate({**entry, "name": name})
    except ValidationError as e:
        errors = [
            f"  - {'.'.join(str(x) for x in error['loc'])}: {error['msg']}" for error in e.errors()
        ]
        raise CredentialMissingError(
            f"Profile '{name}' in {path} is invalid:\n" + "\n".join(errors)
        ) from e

    logger.info("Loaded credential profile '%s' from %s", name, path)
    return profile
