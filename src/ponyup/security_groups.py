"""Security group reconciliation.

create() converges a group's ingress rules to exactly the declared set:

1. Fetch the group by name
2. If it exists, revoke every existing rule (full replace, no diffing)
3. If it does not, create it
4. Authorize each public port range
5. Authorize each peer-group port range, scoped to the peer's identity

Running create() twice with the same spec leaves the same rule set.
"""

from __future__ import annotations

import logging

from .models import SecurityGroupSpec
from .provider import PUBLIC_CIDR, CloudProvider, RemoteGroup

logger = logging.getLogger(__name__)


class PeerGroupNotFoundError(Exception):
    """Raised when a declared peer security group does not exist."""

    def __init__(self, group: str, peer: str) -> None:
        self.group = group
        self.peer = peer
        super().__init__(
            f"Security group '{group}' grants access to peer group '{peer}', "
            f"which does not exist. Create '{peer}' first."
        )


class SecurityGroupReconciler:
    """Creates, converges and deletes security groups."""

    def __init__(self, provider: CloudProvider) -> None:
        self._provider = provider

    def create(self, spec: SecurityGroupSpec) -> RemoteGroup:
        """Converge the remote group named ``spec.name`` to ``spec``.

        Returns:
            The group as re-read from the provider after convergence.

        Raises:
            PeerGroupNotFoundError: If a peer group in the spec does not exist.
        """
        group = self._provider.get_security_group(spec.name)
        if group is not None:
            revoked = self._revoke_all_rules(group)
            logger.info(
                "Cleared existing rules",
                extra={"group": spec.name, "revoked": revoked},
            )
        else:
            group = self._provider.create_security_group(spec.name, spec.description)

        for port_range in spec.public_ports:
            logger.debug(
                "Authorizing public ports",
                extra={"group": spec.name, "ports": str(port_range)},
            )
            self._provider.authorize_port_range(group, port_range)

        for peer_name, port_ranges in spec.peer_group_ports.items():
            peer_group = self._provider.get_security_group(peer_name)
            if peer_group is None:
                raise PeerGroupNotFoundError(spec.name, peer_name)
            peer = peer_group.peer_ref()
            for port_range in port_ranges:
                logger.debug(
                    "Authorizing peer ports",
                    extra={"group": spec.name, "peer": peer_name, "ports": str(port_range)},
                )
                self._provider.authorize_port_range(group, port_range, peer=peer)

        logger.info(
            "Security group converged",
            extra={
                "group": spec.name,
                "public_rules": len(spec.public_ports),
                "peer_rules": sum(len(p) for p in spec.peer_group_ports.values()),
            },
        )
        return self._provider.get_security_group(spec.name) or group

    def destroy(self, name: str) -> bool:
        """Delete the group named ``name`` if it exists.

        Returns:
            True if a group was deleted, False if there was nothing to delete.
        """
        group = self._provider.get_security_group(name)
        if group is None:
            logger.info("Security group absent, nothing to delete", extra={"group": name})
            return False
        self._provider.delete_security_group(group)
        return True

    def _revoke_all_rules(self, group: RemoteGroup) -> int:
        """Revoke every ingress rule on ``group``. Returns the revoke call count."""
        revoked = 0
        for rule in group.rules:
            for peer in rule.peers:
                self._provider.revoke_port_range(
                    group,
                    rule.port_range,
                    peer=peer,
                    protocol=rule.protocol,
                )
                revoked += 1
            # CIDR blocks and prefix lists can sit alongside peers; those go too.
            if rule.cidr_ranges or rule.prefix_list_ids:
                self._provider.revoke_port_range(
                    group,
                    rule.port_range,
                    protocol=rule.protocol,
                    cidr_ranges=rule.cidr_ranges,
                    prefix_list_ids=rule.prefix_list_ids,
                )
                revoked += 1
            elif not rule.peers:
                # A permission reported with no sources at all.
                self._provider.revoke_port_range(
                    group,
                    rule.port_range,
                    protocol=rule.protocol,
                    cidr_ranges=(PUBLIC_CIDR,),
                )
                revoked += 1
        return revoked
