# ABOUTME: Unit tests for owner reference helpers
# ABOUTME: Tests controller references used for cascading Environment deletion

import pytest

from devenv_operator.utils.ownership import (
    OwnershipError,
    is_owned_by,
    owner_reference,
    set_controller_reference,
)

OWNER = {
    "apiVersion": "dev.vadasambar.github.io/v1alpha1",
    "kind": "Environment",
    "metadata": {"name": "demo", "uid": "uid-1"},
}


@pytest.mark.unit
class TestOwnerReference:
    """Tests for owner_reference."""

    def test_builds_controller_reference(self):
        """Test the reference marks the owner as blocking controller."""
        ref = owner_reference(OWNER)

        assert ref == {
            "apiVersion": "dev.vadasambar.github.io/v1alpha1",
            "kind": "Environment",
            "name": "demo",
            "uid": "uid-1",
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def test_owner_without_uid_raises(self):
        """Test an owner that was never persisted cannot own anything."""
        owner = {"apiVersion": "v1", "kind": "Environment", "metadata": {"name": "demo"}}

        with pytest.raises(OwnershipError, match="no uid"):
            owner_reference(owner)


@pytest.mark.unit
class TestSetControllerReference:
    """Tests for set_controller_reference."""

    def test_adds_reference_in_place(self):
        """Test the child is modified and returned."""
        child = {"kind": "NodePool", "metadata": {"name": "demo-cluster"}}

        result = set_controller_reference(OWNER, child)

        assert result is child
        assert child["metadata"]["ownerReferences"][0]["uid"] == "uid-1"

    def test_creates_metadata_when_missing(self):
        """Test a child without metadata gets one."""
        child: dict = {"kind": "NodePool"}

        set_controller_reference(OWNER, child)

        assert is_owned_by(child, OWNER)

    def test_replaces_existing_reference_to_same_owner(self):
        """Test applying twice leaves a single reference."""
        child = {"kind": "Application", "metadata": {"name": "guestbook"}}

        set_controller_reference(OWNER, child)
        set_controller_reference(OWNER, child)

        assert len(child["metadata"]["ownerReferences"]) == 1

    def test_keeps_non_controller_references(self):
        """Test plain owner references are preserved."""
        other = {"apiVersion": "v1", "kind": "ConfigMap", "name": "cfg", "uid": "uid-2"}
        child = {"kind": "Application", "metadata": {"name": "guestbook", "ownerReferences": [other]}}

        set_controller_reference(OWNER, child)

        uids = [r["uid"] for r in child["metadata"]["ownerReferences"]]
        assert uids == ["uid-2", "uid-1"]

    def test_different_controller_raises(self):
        """Test a child controlled by another owner is rejected."""
        other = {
            "apiVersion": "dev.vadasambar.github.io/v1alpha1",
            "kind": "Environment",
            "name": "other",
            "uid": "uid-9",
            "controller": True,
        }
        child = {"kind": "Application", "metadata": {"name": "guestbook", "ownerReferences": [other]}}

        with pytest.raises(OwnershipError, match="already controlled"):
            set_controller_reference(OWNER, child)


@pytest.mark.unit
class TestIsOwnedBy:
    """Tests for is_owned_by."""

    def test_not_owned_without_references(self):
        """Test a child without references is not owned."""
        assert not is_owned_by({"metadata": {"name": "x"}}, OWNER)

    def test_owner_without_uid_owns_nothing(self):
        """Test an owner without a uid never matches."""
        child = {"metadata": {"ownerReferences": [{"uid": ""}]}}
        assert not is_owned_by(child, {"metadata": {"name": "demo"}})
