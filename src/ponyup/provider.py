"""Cloud-provider collaborator: security groups and compute instances.

The reconciler and lifecycle manager only ever talk to a CloudProvider.
Ec2Provider is the boto3-backed implementation; tests substitute an
in-memory fake.

Provider errors are NOT handled here beyond translating "not found" on
lookups into None. Everything else propagates to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .models import PortRange
from .profiles import CredentialMissingError

if TYPE_CHECKING:
    from .profiles import Profile

logger = logging.getLogger(__name__)

PUBLIC_CIDR = "0.0.0.0/0"
DEFAULT_PROTOCOL = "tcp"
ALL_PROTOCOLS = "-1"
RUNNING_STATE = "running"
NAME_TAG = "Name"

# Error codes EC2 returns when a lookup target does not exist
NOT_FOUND_ERROR_CODES = frozenset(
    {
        "InvalidGroup.NotFound",
        "InvalidGroupId.NotFound",
        "InvalidInstanceID.NotFound",
    }
)


# =============================================================================
# Provider records
# =============================================================================


@dataclass(frozen=True)
class PeerRef:
    """Opaque identity of a peer security group (owner account + group)."""

    owner_id: str
    group_id: str
    group_name: str | None = None


@dataclass(frozen=True)
class SecurityRule:
    """One ingress permission as reported by the provider.

    ``port_range`` is None for all-traffic rules (protocol ``-1``).
    A rule with peers is scoped to those groups. CIDR blocks and managed
    prefix lists are the other sources one permission can carry.
    """

    protocol: str
    port_range: PortRange | None
    cidr_ranges: tuple[str, ...] = ()
    peers: tuple[PeerRef, ...] = ()
    prefix_list_ids: tuple[str, ...] = ()


@dataclass
class RemoteGroup:
    """A security group as it currently exists at the provider."""

    name: str
    group_id: str
    owner_id: str
    description: str = ""
    rules: list[SecurityRule] = field(default_factory=list)

    def peer_ref(self) -> PeerRef:
        """Identity other groups use to grant access to this group's members."""
        return PeerRef(owner_id=self.owner_id, group_id=self.group_id, group_name=self.name)


@dataclass
class Instance:
    """A compute instance as it currently exists at the provider."""

    instance_id: str
    name: str | None
    state: str
    dns_name: str | None = None
    public_ip: str | None = None

    @property
    def ready(self) -> bool:
        return self.state == RUNNING_STATE

    @property
    def address(self) -> str | None:
        """Address used to reach the instance over SSH."""
        return self.dns_name or self.public_ip


class CloudProvider(Protocol):
    """Provider surface used by the reconciler and lifecycle manager."""

    def get_security_group(self, name: str) -> RemoteGroup | None: ...

    def create_security_group(self, name: str, description: str) -> RemoteGroup: ...

    def delete_security_group(self, group: RemoteGroup) -> None: ...

    def authorize_port_range(
        self,
        group: RemoteGroup,
        port_range: PortRange,
        *,
        peer: PeerRef | None = None,
    ) -> None: ...

    def revoke_port_range(
        self,
        group: RemoteGroup,
        port_range: PortRange | None,
        *,
        peer: PeerRef | None = None,
        protocol: str = DEFAULT_PROTOCOL,
        cidr_ranges: tuple[str, ...] = (PUBLIC_CIDR,),
        prefix_list_ids: tuple[str, ...] = (),
    ) -> None: ...

    def find_running_instance(self, name: str) -> Instance | None: ...

    def create_instance(
        self,
        *,
        name: str,
        security_groups: tuple[str, ...],
        key_name: str | None,
        size: str,
        image_id: str,
    ) -> Instance: ...

    def reload_instance(self, instance: Instance) -> Instance: ...

    def terminate_instance(self, instance: Instance) -> None: ...


# =============================================================================
# EC2 implementation
# =============================================================================


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in NOT_FOUND_ERROR_CODES


def _tag_value(tags: list[dict[str, str]] | None, key: str) -> str | None:
    for tag in tags or []:
        if tag.get("Key") == key:
            return tag.get("Value")
    return None


def _parse_rule(permission: dict[str, Any]) -> SecurityRule:
    protocol = str(permission.get("IpProtocol", DEFAULT_PROTOCOL))
    from_port = permission.get("FromPort")
    to_port = permission.get("ToPort")
    # ICMP rules report -1 for "all types", which is not a port range.
    if from_port is None or to_port is None or from_port < 0 or to_port < 0:
        port_range = None
    else:
        port_range = PortRange(min=from_port, max=to_port)

    cidrs = [r["CidrIp"] for r in permission.get("IpRanges", []) if "CidrIp" in r]
    cidrs += [r["CidrIpv6"] for r in permission.get("Ipv6Ranges", []) if "CidrIpv6" in r]
    peers = tuple(
        PeerRef(
            owner_id=pair.get("UserId", ""),
            group_id=pair.get("GroupId", ""),
            group_name=pair.get("GroupName"),
        )
        for pair in permission.get("UserIdGroupPairs", [])
    )
    prefix_lists = tuple(
        p["PrefixListId"] for p in permission.get("PrefixListIds", []) if "PrefixListId" in p
    )
    return SecurityRule(
        protocol=protocol,
        port_range=port_range,
        cidr_ranges=tuple(cidrs),
        peers=peers,
        prefix_list_ids=prefix_lists,
    )


def _parse_group(data: dict[str, Any]) -> RemoteGroup:
    return RemoteGroup(
        name=data["GroupName"],
        group_id=data["GroupId"],
        owner_id=data.get("OwnerId", ""),
        description=data.get("Description", ""),
        rules=[_parse_rule(p) for p in data.get("IpPermissions", [])],
    )


def _parse_instance(data: dict[str, Any]) -> Instance:
    return Instance(
        instance_id=data["InstanceId"],
        name=_tag_value(data.get("Tags"), NAME_TAG),
        state=data.get("State", {}).get("Name", "unknown"),
        dns_name=data.get("PublicDnsName") or None,
        public_ip=data.get("PublicIpAddress"),
    )


def _permission(
    port_range: PortRange | None,
    *,
    protocol: str,
    peer: PeerRef | None,
    cidr_ranges: tuple[str, ...],
    prefix_list_ids: tuple[str, ...] = (),
) -> dict[str, Any]:
    permission: dict[str, Any] = {"IpProtocol": protocol}
    if port_range is not None:
        permission["FromPort"] = port_range.min
        permission["ToPort"] = port_range.max
    elif protocol != ALL_PROTOCOLS:
        # icmp "all types"
        permission["FromPort"] = -1
        permission["ToPort"] = -1

    if peer is not None:
        permission["UserIdGroupPairs"] = [{"UserId": peer.owner_id, "GroupId": peer.group_id}]
        return permission

    ipv4 = [c for c in cidr_ranges if ":" not in c]
    ipv6 = [c for c in cidr_ranges if ":" in c]
    if ipv4:
        permission["IpRanges"] = [{"CidrIp": c} for c in ipv4]
    if ipv6:
        permission["Ipv6Ranges"] = [{"CidrIpv6": c} for c in ipv6]
    if prefix_list_ids:
        permission["PrefixListIds"] = [{"PrefixListId": p} for p in prefix_list_ids]
    return permission


class Ec2Provider:
    """CloudProvider backed by the boto3 EC2 client.

    The client is passed in explicitly; from_profile() builds one from a
    credential profile at startup.
    """

    def __init__(self, client: Any) -> None:
        self._ec2 = client

    @classmethod
    def from_profile(cls, profile: Profile) -> Ec2Provider:
        """Build a provider for ``profile``.

        Raises:
            CredentialMissingError: If the AWS profile is unknown or the
                session resolves no credentials.
        """
        source = f" (AWS profile '{profile.aws_profile}')" if profile.aws_profile else ""
        try:
            session = boto3.Session(
                profile_name=profile.aws_profile,
                region_name=profile.region,
            )
            credentials = session.get_credentials()
        except BotoCoreError as e:
            raise CredentialMissingError(
                f"Cannot load AWS credentials for profile '{profile.name}'{source}: {e}"
            ) from e
        if credentials is None:
            raise CredentialMissingError(
                f"No AWS credentials available for profile '{profile.name}'{source}"
            )
        logger.debug(
            "Created EC2 session",
            extra={"profile": profile.name, "region": session.region_name},
        )
        return cls(session.client("ec2"))

    # -------------------------------------------------------------------------
    # Security groups
    # -------------------------------------------------------------------------

    def get_security_group(self, name: str) -> RemoteGroup | None:
        try:
            response = self._ec2.describe_security_groups(
                Filters=[{"Name": "group-name", "Values": [name]}]
            )
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise

        groups = response.get("SecurityGroups", [])
        if not groups:
            return None
        return _parse_group(groups[0])

    def create_security_group(self, name: str, description: str) -> RemoteGroup:
        response = self._ec2.create_security_group(GroupName=name, Description=description)
        group_id = response["GroupId"]
        logger.info("Created security group", extra={"group": name, "group_id": group_id})

        described = self._ec2.describe_security_groups(GroupIds=[group_id])
        return _parse_group(described["SecurityGroups"][0])

    def delete_security_group(self, group: RemoteGroup) -> None:
        self._ec2.delete_security_group(GroupId=group.group_id)
        logger.info(
            "Deleted security group",
            extra={"group": group.name, "group_id": group.group_id},
        )

    def authorize_port_range(
        self,
        group: RemoteGroup,
        port_range: PortRange,
        *,
        peer: PeerRef | None = None,
    ) -> None:
        permission = _permission(
            port_range,
            protocol=DEFAULT_PROTOCOL,
            peer=peer,
            cidr_ranges=(PUBLIC_CIDR,),
        )
        self._ec2.authorize_security_group_ingress(
            GroupId=group.group_id, IpPermissions=[permission]
        )

    def revoke_port_range(
        self,
        group: RemoteGroup,
        port_range: PortRange | None,
        *,
        peer: PeerRef | None = None,
        protocol: str = DEFAULT_PROTOCOL,
        cidr_ranges: tuple[str, ...] = (PUBLIC_CIDR,),
        prefix_list_ids: tuple[str, ...] = (),
    ) -> None:
        permission = _permission(
            port_range,
            protocol=protocol,
            peer=peer,
            cidr_ranges=cidr_ranges,
            prefix_list_ids=prefix_list_ids,
        )
        self._ec2.revoke_security_group_ingress(
            GroupId=group.group_id, IpPermissions=[permission]
        )

    # -------------------------------------------------------------------------
    # Instances
    # -------------------------------------------------------------------------

    def find_running_instance(self, name: str) -> Instance | None:
        """First running instance tagged ``Name=name``, if any.

        When several match, only the first is addressed.
        """
        response = self._ec2.describe_instances(
            Filters=[
                {"Name": f"tag:{NAME_TAG}", "Values": [name]},
                {"Name": "instance-state-name", "Values": [RUNNING_STATE]},
            ]
        )
        for reservation in response.get("Reservations", []):
            for data in reservation.get("Instances", []):
                return _parse_instance(data)
        return None

    def create_instance(
        self,
        *,
        name: str,
        security_groups: tuple[str, ...],
        key_name: str | None,
        size: str,
        image_id: str,
    ) -> Instance:
        params: dict[str, Any] = {
            "ImageId": image_id,
            "InstanceType": size,
            "MinCount": 1,
            "MaxCount": 1,
            "TagSpecifications": [
                {
                    "ResourceType": "instance",
                    "Tags": [{"Key": NAME_TAG, "Value": name}],
                }
            ],
        }
        if security_groups:
            params["SecurityGroups"] = list(security_groups)
        if key_name:
            params["KeyName"] = key_name

        response = self._ec2.run_instances(**params)
        instance = _parse_instance(response["Instances"][0])
        logger.info(
            "Requested instance",
            extra={"host": name, "instance_id": instance.instance_id, "size": size},
        )
        return instance

    def reload_instance(self, instance: Instance) -> Instance:
        try:
            response = self._ec2.describe_instances(InstanceIds=[instance.instance_id])
        except ClientError as e:
            # Freshly requested instances can briefly be invisible to describe calls.
            if _is_not_found(e):
                return instance
            raise
        for reservation in response.get("Reservations", []):
            for data in reservation.get("Instances", []):
                return _parse_instance(data)
        return instance

    def terminate_instance(self, instance: Instance) -> None:
        self._ec2.terminate_instances(InstanceIds=[instance.instance_id])
        logger.info(
            "Terminated instance",
            extra={"host": instance.name, "instance_id": instance.instance_id},
        )


class ProviderNotConnectedError(RuntimeError):
    """Raised when an offline provider is asked to reach EC2."""

    pass


class OfflineProvider:
    """Stand-in for commands that only read declarations.

    Lets ``ponyup list`` build the operation graph without a credential
    profile. Any provider call raises ProviderNotConnectedError.
    """

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        raise ProviderNotConnectedError(f"EC2 is not connected; cannot call {name}()")
