"""Static catalog of named tools.

Each tool maps to exactly one REST request against the Render API:
an HTTP method, a path template with ``{param}`` placeholders, the
parameters that must be supplied, and the optional ones sent as query
string. For tools with ``body=True``, arguments that are neither path nor
query parameters become the JSON request body.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True)
class ToolSpec:
    """One entry in the tool catalog."""

    name: str
    method: str
    path: str
    description: str
    required: tuple[str, ...] = ()
    query: tuple[str, ...] = ()
    body: bool = False

    @property
    def path_params(self) -> tuple[str, ...]:
        return tuple(_PLACEHOLDER_RE.findall(self.path))

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "method": self.method,
            "path": self.path,
            "description": self.description,
            "required": list(self.required),
            "query": list(self.query),
            "body": self.body,
        }


TOOLS: dict[str, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec(
            name="list-services",
            method="GET",
            path="/services",
            description="List services in the account.",
            query=("name", "type", "limit", "cursor"),
        ),
        ToolSpec(
            name="get-service",
            method="GET",
            path="/services/{serviceId}",
            description="Fetch one service by id.",
            required=("serviceId",),
        ),
        ToolSpec(
            name="list-deploys",
            method="GET",
            path="/services/{serviceId}/deploys",
            description="List deploys for a service, newest first.",
            required=("serviceId",),
            query=("limit", "cursor"),
        ),
        ToolSpec(
            name="get-deploy",
            method="GET",
            path="/services/{serviceId}/deploys/{deployId}",
            description="Fetch one deploy.",
            required=("serviceId", "deployId"),
        ),
        ToolSpec(
            name="trigger-deploy",
            method="POST",
            path="/services/{serviceId}/deploys",
            description="Start a deploy. Optional body fields: clearCache, commitId.",
            required=("serviceId",),
            body=True,
        ),
        ToolSpec(
            name="restart-service",
            method="POST",
            path="/services/{serviceId}/restart",
            description="Restart a running service.",
            required=("serviceId",),
        ),
        ToolSpec(
            name="list-env-vars",
            method="GET",
            path="/services/{serviceId}/env-vars",
            description="List environment variables of a service.",
            required=("serviceId",),
            query=("limit", "cursor"),
        ),
    )
}


def get_tool(name: str) -> ToolSpec | None:
    return TOOLS.get(name)
