"""Action step profiles for generated templates.

The profile is picked per XRD through the ``xrdcatalog.dev/template-steps``
annotation. Every profile first renders the resource manifest from the form
parameters; profiles differ in what they do with it.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

DEFAULT_PROFILE = "default"


def render_manifest(
    api_version: str,
    kind: str,
    field_names: list[str],
    namespaced: bool,
) -> dict[str, Any]:
    """Manifest skeleton with every spec field bound to its form parameter."""
    metadata: dict[str, Any] = {"name": "${{ parameters.name }}"}
    if namespaced:
        metadata["namespace"] = "${{ parameters.namespace }}"
    return {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": metadata,
        "spec": {name: f"${{{{ parameters.{name} }}}}" for name in field_names},
    }


def _render_step(manifest: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": "render",
        "name": "Render resource manifest",
        "action": "roadiehq:utils:serialize:yaml",
        "input": {"data": manifest},
    }


def _default_steps(manifest: dict[str, Any], cluster: str) -> list[dict[str, Any]]:
    return [
        _render_step(manifest),
        {
            "id": "apply",
            "name": "Apply resource",
            "action": "kubernetes:apply",
            "input": {
                "manifest": "${{ steps.render.output.serialized }}",
                "clusterName": cluster,
                "namespaced": "namespace" in manifest["metadata"],
            },
        },
    ]


def _gitops_steps(manifest: dict[str, Any], cluster: str) -> list[dict[str, Any]]:
    path = f"clusters/{cluster}/${{{{ parameters.name }}}}.yaml"
    return [
        _render_step(manifest),
        {
            "id": "write",
            "name": "Write manifest",
            "action": "roadiehq:utils:fs:write",
            "input": {"path": path, "content": "${{ steps.render.output.serialized }}"},
        },
        {
            "id": "pull-request",
            "name": "Open pull request",
            "action": "publish:github:pull-request",
            "input": {
                "repoUrl": "${{ parameters.repoUrl }}",
                "branchName": "create-${{ parameters.name }}",
                "title": f"Create {manifest['kind']} ${{{{ parameters.name }}}}",
                "description": f"Adds {manifest['kind']} to cluster {cluster}",
            },
        },
    ]


def _debug_steps(manifest: dict[str, Any], cluster: str) -> list[dict[str, Any]]:
    return [
        _render_step(manifest),
        {
            "id": "log",
            "name": "Log manifest",
            "action": "debug:log",
            "input": {"message": "${{ steps.render.output.serialized }}"},
        },
    ]


StepProfile = Callable[[dict[str, Any], str], list[dict[str, Any]]]

PROFILES: dict[str, StepProfile] = {
    "default": _default_steps,
    "gitops": _gitops_steps,
    "debug": _debug_steps,
}


def build_steps(profile: str, manifest: dict[str, Any], cluster: str) -> list[dict[str, Any]]:
    """Build the action steps for a profile.

    Raises:
        KeyError: If the profile is unknown.
    """
    return PROFILES[profile](manifest, cluster)


def build_output(profile: str, cluster: str) -> dict[str, Any]:
    """Links shown after the template ran."""
    if profile == "gitops":
        return {
            "links": [
                {"title": "Pull request", "url": "${{ steps['pull-request'].output.remoteUrl }}"}
            ]
        }
    return {"text": [{"title": "Target cluster", "content": cluster}]}


def gitops_parameters() -> dict[str, Any]:
    """Extra form section the gitops profile needs."""
    return {
        "title": "Repository",
        "required": ["repoUrl"],
        "properties": {
            "repoUrl": {
                "title": "Repository",
                "type": "string",
                "ui:field": "RepoUrlPicker",
            }
        },
    }
