"""Pydantic models for resource declarations with validation.

These models provide:
1. Type-safe parsing of declarations (YAML or Python calls)
2. Validation at the boundary (fail fast, fail loudly)
3. A single PortRange shape for everything downstream of the boundary
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator, model_validator

MIN_PORT = 0
MAX_PORT = 65535


# =============================================================================
# Port ranges
# =============================================================================


class PortRange(BaseModel):
    """Inclusive port interval. A single port ``p`` is ``PortRange(min=p, max=p)``."""

    model_config = {"frozen": True, "extra": "forbid"}

    min: Annotated[int, Field(ge=MIN_PORT, le=MAX_PORT)]
    max: Annotated[int, Field(ge=MIN_PORT, le=MAX_PORT)]

    @model_validator(mode="after")
    def check_order(self) -> PortRange:
        if self.min > self.max:
            raise ValueError(f"port range minimum {self.min} exceeds maximum {self.max}")
        return self

    @classmethod
    def single(cls, port: int) -> PortRange:
        """Canonical range for one port."""
        return normalize_port_range(port)

    def __str__(self) -> str:
        return f"{self.min}-{self.max}"


def _make_range(low: Any, high: Any, original: Any) -> PortRange:
    if isinstance(low, bool) or isinstance(high, bool):
        raise ValueError(f"Invalid port range: {original!r}")
    try:
        low_port = int(low)
        high_port = int(high)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid port range: {original!r}") from e

    for port in (low_port, high_port):
        if not MIN_PORT <= port <= MAX_PORT:
            raise ValueError(f"Port {port} outside {MIN_PORT}-{MAX_PORT}: {original!r}")
    if low_port > high_port:
        raise ValueError(f"Port range minimum exceeds maximum: {original!r}")

    return PortRange(min=low_port, max=high_port)


def normalize_port_range(value: Any) -> PortRange:
    """Canonicalize one port declaration into a PortRange.

    Accepted shapes:
        443                 -> 443-443
        "443"               -> 443-443
        "8000-8010"         -> 8000-8010
        [8000, 8010]        -> 8000-8010
        {"min": 1, "max": 2} -> 1-2
        PortRange(...)      -> unchanged

    Raises:
        ValueError: If the value is not a port declaration or is out of bounds.
    """
    if isinstance(value, PortRange):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid port range: {value!r}")
    if isinstance(value, int):
        return _make_range(value, value, value)
    if isinstance(value, str):
        low, sep, high = value.strip().partition("-")
        if sep:
            return _make_range(low.strip(), high.strip(), value)
        return _make_range(low, low, value)
    if isinstance(value, Mapping):
        if set(value) != {"min", "max"}:
            raise ValueError(f"Port range mapping needs exactly 'min' and 'max': {value!r}")
        return _make_range(value["min"], value["max"], value)
    if isinstance(value, Sequence) and len(value) == 2:
        return _make_range(value[0], value[1], value)
    raise ValueError(f"Invalid port range: {value!r}")


def normalize_ports(value: Any) -> tuple[PortRange, ...]:
    """Normalize a scalar or a list of port declarations.

    Duplicates are dropped, first occurrence wins, so the result is a set
    that still iterates in declaration order.
    """
    if value is None:
        return ()
    if isinstance(value, (int, str, Mapping, PortRange)):
        items: Sequence[Any] = [value]
    elif isinstance(value, Sequence):
        items = value
    else:
        raise ValueError(f"Ports must be a port, a range, or a list of them: {value!r}")
    return tuple(dict.fromkeys(normalize_port_range(item) for item in items))


# =============================================================================
# Security groups
# =============================================================================


class SecurityGroupSpec(BaseModel):
    """Desired state of one security group.

    ``public_ports`` are opened to the world; ``peer_group_ports`` maps a
    peer group name to the ports opened to members of that group.
    """

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=255)]
    public_ports: tuple[PortRange, ...] = Field(default=(), alias="publicPorts")
    peer_group_ports: dict[str, tuple[PortRange, ...]] = Field(
        default_factory=dict, alias="groupPorts"
    )

    @field_validator("public_ports", mode="before")
    @classmethod
    def normalize_public_ports(cls, v: Any) -> tuple[PortRange, ...]:
        return normalize_ports(v)

    @field_validator("peer_group_ports", mode="before")
    @classmethod
    def normalize_peer_ports(cls, v: Any) -> dict[str, tuple[PortRange, ...]]:
        if v is None:
            return {}
        if not isinstance(v, Mapping):
            raise ValueError("groupPorts must map peer group names to ports")
        normalized: dict[str, tuple[PortRange, ...]] = {}
        for peer, ports in v.items():
            if not isinstance(peer, str) or not peer:
                raise ValueError(f"Peer group name must be a non-empty string: {peer!r}")
            normalized[peer] = normalize_ports(ports)
        return normalized

    @property
    def description(self) -> str:
        return f"Automated group {self.name}"


# =============================================================================
# Hosts
# =============================================================================


class HostOptions(BaseModel):
    """Per-host launch and provisioning options.

    Unset ``key_name``, ``image_id`` and ``size`` fall back to the
    credential profile defaults at launch time.
    """

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True}

    key_name: str | None = Field(None, alias="keyName")
    image_id: str | None = Field(None, alias="imageId")
    size: str | None = None
    knife_solo: bool = Field(False, alias="knifeSolo")
    attributes: str | None = None

    @model_validator(mode="after")
    def require_attributes_for_knife_solo(self) -> HostOptions:
        if self.knife_solo and not self.attributes:
            raise ValueError("attributes (a node JSON file) is required when knife_solo is set")
        return self


class HostSpec(BaseModel):
    """Desired state of one compute host."""

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=255)]
    security_groups: tuple[str, ...] = Field(default=(), alias="securityGroups")
    runlist: str = ""
    options: HostOptions = Field(default_factory=HostOptions)

    @field_validator("security_groups", mode="before")
    @classmethod
    def coerce_security_groups(cls, v: Any) -> Any:
        if v is None:
            return ()
        if isinstance(v, str):
            return (v,)
        return v

    @field_validator("runlist", mode="before")
    @classmethod
    def coerce_runlist(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, (list, tuple)):
            return ",".join(str(item) for item in v)
        return v

    @property
    def needs_provisioning(self) -> bool:
        """False only for an empty runlist without knife-solo."""
        return bool(self.runlist) or self.options.knife_solo
