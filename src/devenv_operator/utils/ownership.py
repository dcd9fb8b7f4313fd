# ABOUTME: Owner reference helpers linking child resources to their Environment
# ABOUTME: Lets the Kubernetes garbage collector cascade Environment deletion

"""
Ownership links between an Environment and the resources it creates.

Every child (cluster claim, node pool, Argo CD application) carries a
controller owner reference to its Environment. When the Environment is
deleted, the garbage collector deletes the children.

An owner reference looks like:

    ownerReferences:
    - apiVersion: dev.vadasambar.github.io/v1alpha1
      kind: Environment
      name: demo
      uid: 3f0c...
      controller: true
      blockOwnerDeletion: true

Environments are cluster-scoped, so they may own both namespaced children
(claims, applications) and cluster-scoped ones (node pools).
"""

from __future__ import annotations

from typing import Any


class OwnershipError(ValueError):
    """Raised when an owner reference cannot be attached."""


def owner_reference(owner: dict[str, Any]) -> dict[str, Any]:
    """
    Build a controller owner reference from an owner object.

    Args:
        owner: The owner as returned by the API server (needs apiVersion,
               kind, metadata.name and metadata.uid)

    Raises:
        OwnershipError: If the owner has no uid (it was never persisted)
    """
    metadata = owner.get("metadata", {})
    uid = metadata.get("uid")
    if not uid:
        raise OwnershipError(f"owner {metadata.get('name')!r} has no uid")

    return {
        "apiVersion": owner["apiVersion"],
        "kind": owner["kind"],
        "name": metadata["name"],
        "uid": uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def set_controller_reference(owner: dict[str, Any], child: dict[str, Any]) -> dict[str, Any]:
    """
    Attach the owner as the controller of a child manifest, in place.

    A child can have only one controller. An existing controller reference
    to the same owner uid is replaced; a controller reference to a different
    owner is an error.

    Returns:
        The same child dict, for chaining.
    """
    ref = owner_reference(owner)
    metadata = child.setdefault("metadata", {})
    refs = [r for r in metadata.get("ownerReferences", []) if r.get("uid") != ref["uid"]]

    for existing in refs:
        if existing.get("controller"):
            raise OwnershipError(
                f"{child.get('kind')} {metadata.get('name')!r} is already controlled by "
                f"{existing.get('kind')} {existing.get('name')!r}"
            )

    refs.append(ref)
    metadata["ownerReferences"] = refs
    return child


def is_owned_by(child: dict[str, Any], owner: dict[str, Any]) -> bool:
    """True when the child carries an owner reference to the owner's uid."""
    uid = owner.get("metadata", {}).get("uid")
    refs = child.get("metadata", {}).get("ownerReferences", [])
    return bool(uid) and any(r.get("uid") == uid for r in refs)
