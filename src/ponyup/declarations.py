"""Declaration front-end bound to a ResourceGraph.

    decl = Declarations(graph)
    decl.security("web", [80, 443])
    decl.security("internal", [], {"web": 8080})
    decl.host("app", ["web", "internal"], "role[app]", {"key_name": "deploy"})

Arguments are validated into spec models here, at the boundary; the
graph only ever sees SecurityGroupSpec and HostSpec values.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .models import HostOptions, HostSpec, SecurityGroupSpec
from .resource_graph import ResourceGraph


class Declarations:
    """The ``security`` / ``host`` declaration calls."""

    def __init__(self, graph: ResourceGraph) -> None:
        self._graph = graph

    @property
    def graph(self) -> ResourceGraph:
        return self._graph

    def security(
        self,
        name: str,
        public_ports: Any = (),
        group_ports: Mapping[str, Any] | None = None,
    ) -> str:
        """Declare a security group.

        ``public_ports`` may be a single port, a range, or a list of
        either; ``group_ports`` maps peer group names to the same shapes.

        Returns:
            The registered namespace, ``security:<name>``.
        """
        spec = SecurityGroupSpec(
            name=name,
            public_ports=public_ports,
            peer_group_ports=dict(group_ports or {}),
        )
        return self._graph.register_security_group(spec)

    def host(
        self,
        name: str,
        security_groups: Any,
        runlist: Any = "",
        options: Mapping[str, Any] | HostOptions | None = None,
    ) -> str:
        """Declare a host.

        Recognized options: key_name, image_id, size, knife_solo, attributes.

        Returns:
            The registered namespace, ``host:<name>``.
        """
        if isinstance(options, HostOptions):
            host_options = options
        else:
            host_options = HostOptions.model_validate(dict(options or {}))
        spec = HostSpec(
            name=name,
            security_groups=security_groups,
            runlist=runlist,
            options=host_options,
        )
        return self._graph.register_host(spec)
