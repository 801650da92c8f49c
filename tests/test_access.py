"""Tests for access.py module."""

import pytest
from kubernetes.client import ApiException

from tiller_auto import manifests
from tiller_auto.access import (
    CONFIG_MANAGER_GRANT,
    OPERATOR_GRANT,
    AccessBootstrapper,
    config_manager_grant,
    operator_grant,
)
from tiller_auto.exceptions import PartialTeardownError, ResourceExistsError
from tiller_auto.models import ClusterIdentity

IDENTITY = ClusterIdentity(name="tiller-auto", namespace="tiller-system")


class TestEnsureIdentity:
    """Tests for service account creation."""

    def test_creates_missing_identity(self, cluster_api):
        """Test that a missing service account is created."""
        created = AccessBootstrapper(cluster_api).ensure_identity(IDENTITY)

        assert created is True
        assert ("ServiceAccount", "tiller-system", "tiller-auto") in cluster_api.objects

    def test_second_call_is_noop(self, cluster_api):
        """Test that calling twice creates exactly one service account."""
        access = AccessBootstrapper(cluster_api)

        assert access.ensure_identity(IDENTITY) is True
        assert access.ensure_identity(IDENTITY) is False
        assert len(cluster_api.called("create_service_account")) == 1

    def test_existing_identity_is_not_modified(self, cluster_api):
        """Test that an existing service account is only looked up."""
        AccessBootstrapper(cluster_api).ensure_identity(IDENTITY)
        cluster_api.calls.clear()

        AccessBootstrapper(cluster_api).ensure_identity(IDENTITY)

        assert [call[0] for call in cluster_api.calls] == ["get_service_account"]

    def test_concurrent_creation_reports_not_created(self, cluster_api):
        """Test that losing a create race is reported as already existing."""
        cluster_api.failures["create_service_account"] = ResourceExistsError(
            "ServiceAccount", "tiller-system", "tiller-auto"
        )

        assert AccessBootstrapper(cluster_api).ensure_identity(IDENTITY) is False


class TestEnsureGrant:
    """Tests for role and role binding creation."""

    def test_creates_role_and_binding(self, cluster_api):
        """Test that both objects are created in the target namespace."""
        grant = operator_grant(IDENTITY, "apps")

        AccessBootstrapper(cluster_api).ensure_grant(grant)

        role = cluster_api.objects[("Role", "apps", OPERATOR_GRANT)]
        binding = cluster_api.objects[("RoleBinding", "apps", f"{OPERATOR_GRANT}-binding")]
        assert role.rules[0].resources == ["*"]
        assert binding.role_ref.name == OPERATOR_GRANT
        assert binding.subjects[0].name == "tiller-auto"
        assert binding.subjects[0].namespace == "tiller-system"

    def test_existing_objects_are_tolerated(self, cluster_api):
        """Test that ensuring the same grant twice does not fail."""
        access = AccessBootstrapper(cluster_api)
        grant = config_manager_grant(IDENTITY)

        access.ensure_grant(grant)
        access.ensure_grant(grant)

        assert len(cluster_api.called("create_role")) == 2
        assert len(cluster_api.called("create_role_binding")) == 2

    def test_binding_failure_rolls_back_new_role(self, cluster_api):
        """Test that a role created in the same call is removed on failure."""
        cluster_api.failures["create_role_binding"] = ApiException(status=403, reason="Forbidden")

        with pytest.raises(ApiException) as exc_info:
            AccessBootstrapper(cluster_api).ensure_grant(operator_grant(IDENTITY, "apps"))

        assert exc_info.value.status == 403
        assert ("Role", "apps", OPERATOR_GRANT) not in cluster_api.objects
        assert cluster_api.called("delete_role") == [("delete_role", "apps", OPERATOR_GRANT)]

    def test_binding_failure_keeps_preexisting_role(self, cluster_api):
        """Test that a role that existed before the call is left alone."""
        access = AccessBootstrapper(cluster_api)
        grant = operator_grant(IDENTITY, "apps")
        access.ensure_grant(grant)
        cluster_api.failures["create_role_binding"] = ApiException(status=500, reason="Internal")

        with pytest.raises(ApiException):
            access.ensure_grant(grant)

        assert ("Role", "apps", OPERATOR_GRANT) in cluster_api.objects
        assert cluster_api.called("delete_role") == []

    def test_failed_rollback_does_not_hide_error(self, cluster_api):
        """Test that the binding error propagates even if rollback fails."""
        cluster_api.failures["create_role_binding"] = ApiException(status=403, reason="Forbidden")
        cluster_api.failures["delete_role"] = ApiException(status=500, reason="Internal")

        with pytest.raises(ApiException) as exc_info:
            AccessBootstrapper(cluster_api).ensure_grant(operator_grant(IDENTITY, "apps"))

        assert exc_info.value.status == 403

    def test_role_failure_propagates(self, cluster_api):
        """Test that other role errors propagate without creating a binding."""
        cluster_api.failures["create_role"] = ApiException(status=422, reason="Invalid")

        with pytest.raises(ApiException):
            AccessBootstrapper(cluster_api).ensure_grant(operator_grant(IDENTITY, "apps"))

        assert cluster_api.called("create_role_binding") == []


class TestDefaultGrants:
    """Tests for the grants Tiller is given."""

    def test_config_manager_grant_targets_tiller_namespace(self):
        """Test the config manager grant is limited to configmaps."""
        grant = config_manager_grant(IDENTITY)

        assert grant.name == CONFIG_MANAGER_GRANT
        assert grant.target_namespace == "tiller-system"
        assert grant.rules[0].resources == ("configmaps",)

    def test_operator_grant_targets_release_namespace(self):
        """Test the operator grant covers everything in the release namespace."""
        grant = operator_grant(IDENTITY, "apps")

        assert grant.target_namespace == "apps"
        assert grant.namespace == "tiller-system"
        assert grant.rules[0].verbs == ("*",)

    def test_grants_cover_all_api_groups(self):
        """Test that both grants apply to every API group, not only core."""
        for grant in (config_manager_grant(IDENTITY), operator_grant(IDENTITY, "apps")):
            assert grant.rules[0].api_groups == ("*", "extensions", "apps")


class TestTeardown:
    """Tests for removing the control plane and its access."""

    @pytest.fixture
    def bootstrapped(self, cluster_api, instance):
        """A cluster with the control plane, identity and both grants."""
        access = AccessBootstrapper(cluster_api)
        grants = [config_manager_grant(IDENTITY), operator_grant(IDENTITY, "apps")]
        access.ensure_identity(IDENTITY)
        for grant in grants:
            access.ensure_grant(grant)
        cluster_api.create_deployment(instance.namespace, manifests.tiller_deployment(instance))
        cluster_api.create_service(instance.namespace, manifests.tiller_service(instance))
        cluster_api.calls.clear()
        return access, grants

    def test_teardown_deletes_everything(self, cluster_api, instance, bootstrapped):
        """Test that a clean teardown removes all objects."""
        access, grants = bootstrapped

        access.teardown(IDENTITY, grants, instance)

        assert cluster_api.objects == {}

    def test_teardown_continues_after_failures(self, cluster_api, instance, bootstrapped):
        """Test that every deletion is attempted and every failure reported."""
        access, grants = bootstrapped
        cluster_api.failures[("delete_deployment", "tiller-deploy")] = ApiException(status=500, reason="Internal")
        cluster_api.failures[("delete_role", CONFIG_MANAGER_GRANT)] = ApiException(status=403, reason="Forbidden")

        with pytest.raises(PartialTeardownError) as exc_info:
            access.teardown(IDENTITY, grants, instance)

        deletions = [call for call in cluster_api.calls if call[0].startswith("delete_")]
        assert len(deletions) == 7
        assert len(exc_info.value.failures) == 2
        message = str(exc_info.value)
        assert "Deployment tiller-system/tiller-deploy" in message
        assert f"Role tiller-system/{CONFIG_MANAGER_GRANT}" in message
        assert "ServiceAccount" not in message

    def test_teardown_reports_missing_objects(self, cluster_api, instance):
        """Test that objects that are already gone are listed as failures."""
        grants = [operator_grant(IDENTITY, "apps")]

        with pytest.raises(PartialTeardownError) as exc_info:
            AccessBootstrapper(cluster_api).teardown(IDENTITY, grants, instance)

        assert len(exc_info.value.failures) == 5
        assert "not found" in str(exc_info.value)
