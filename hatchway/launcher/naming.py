"""Deterministic resource naming for workspaces."""

from __future__ import annotations

import hashlib
import string

# Kubernetes label keys attached to pods, services and claims.
LABEL_POD = "app"
LABEL_USER = "gen3username"
LABEL_APPID = "app-id"

_SAFE_CHARS = frozenset(string.ascii_lowercase + string.digits)


def escapism(value: str) -> str:
    """Escape *value* into ``[a-z0-9-]`` so it is usable as a label value.

    Safe characters pass through; every other byte becomes ``-`` followed by
    its two-digit hex code (``Alice@x`` -> ``-41lice-40x``).
    """
    out = []
    for char in value:
        if char in _SAFE_CHARS:
            out.append(char)
        else:
            out.extend(f"-{byte:02x}" for byte in char.encode("utf-8"))
    return "".join(out)


def workspace_id(user: str, app_id: str) -> str:
    """Stable name of the workspace *user* runs from *app_id*.

    The user part is length-prefixed so that no two distinct ``(user,
    app_id)`` pairs hash the same input.  The result is a DNS-1123 label.
    """
    digest = hashlib.sha256(f"{len(user)}:{user}{app_id}".encode()).hexdigest()
    return f"ws-{digest[:20]}"


def user_resource_name(user: str, resource: str) -> str:
    """Per-user (not per-workspace) name, used for ECS services and task definitions."""
    return f"{resource}-{escapism(user)}"[:63].rstrip("-")


def ecs_cluster_name(commons_endpoint: str) -> str:
    return commons_endpoint.replace(".", "-") + "-cluster"
