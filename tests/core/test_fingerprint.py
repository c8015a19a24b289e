"""Unit tests for FingerprintBuilder."""

import pytest

from decisioncore.core.fingerprint import FingerprintBuilder
from decisioncore.exceptions import TenantIsolationError
from decisioncore.models.context import RequestContext


class TestFingerprintBuilder:
    """Test suite for fingerprint determinism and tenant separation"""

    def setup_method(self):
        self.builder = FingerprintBuilder()

    def _ctx(self, **overrides):
        values = {
            "tenant_id": "T1",
            "organization_id": "org-1",
            "action_type": "send-followup-sms",
            "channel": "sms",
            "parameters": {"template": "followup", "priority": 2, "tags": ["Sales", "vip"]},
        }
        values.update(overrides)
        return RequestContext.from_raw(**values)

    def test_identical_inputs_produce_identical_fingerprints(self):
        assert self.builder.fingerprint(self._ctx()) == self.builder.fingerprint(self._ctx())

    def test_format_is_versioned_sha256(self):
        fp = self.builder.fingerprint(self._ctx())
        prefix, digest = fp.split(":")
        assert prefix == "fp1"
        assert len(digest) == 64

    def test_different_tenant_never_collides(self):
        first = self.builder.fingerprint(self._ctx(tenant_id="T1"))
        second = self.builder.fingerprint(self._ctx(tenant_id="T2"))
        assert first != second

    def test_different_organization_changes_fingerprint(self):
        assert self.builder.fingerprint(self._ctx(organization_id="org-1")) != self.builder.fingerprint(
            self._ctx(organization_id="org-2")
        )

    def test_parameter_order_is_irrelevant(self):
        forward = self._ctx(parameters={"a": "x", "b": "y"})
        backward = self._ctx(parameters={"b": "y", "a": "x"})
        assert self.builder.fingerprint(forward) == self.builder.fingerprint(backward)

    def test_values_are_canonicalized(self):
        plain = self._ctx(parameters={"template": "followup", "count": 3, "tags": ["a", "b"], "urgent": True})
        noisy = self._ctx(parameters={"template": "  FollowUp ", "count": 3.0, "tags": ["B", "A"], "urgent": True})
        assert self.builder.fingerprint(plain) == self.builder.fingerprint(noisy)

    def test_boolean_and_number_are_distinct(self):
        flag = self._ctx(parameters={"x": True})
        number = self._ctx(parameters={"x": 1})
        assert self.builder.fingerprint(flag) != self.builder.fingerprint(number)

    def test_action_type_and_channel_are_case_folded(self):
        upper = self._ctx(action_type="Send-Followup-SMS", channel="SMS")
        assert self.builder.fingerprint(upper) == self.builder.fingerprint(self._ctx())

    def test_volatile_parameters_are_excluded(self):
        morning = self._ctx(parameters={"template": "followup", "occurredAt": "2025-03-04T10:00:00Z", "trace_id": "a"})
        evening = self._ctx(parameters={"template": "followup", "occurredAt": "2025-03-04T22:30:00Z", "trace_id": "b"})
        assert self.builder.fingerprint(morning) == self.builder.fingerprint(evening)

    def test_semantic_parameter_change_changes_fingerprint(self):
        assert self.builder.fingerprint(self._ctx(parameters={"template": "followup"})) != self.builder.fingerprint(
            self._ctx(parameters={"template": "welcome"})
        )

    def test_empty_parameters_are_valid(self):
        assert self.builder.fingerprint(self._ctx(parameters={})).startswith("fp1:")

    def test_user_overrides_do_not_affect_fingerprint(self):
        bypass = self._ctx(user_overrides={"AllowAfterHours": True})
        assert self.builder.fingerprint(bypass) == self.builder.fingerprint(self._ctx())

    @pytest.mark.parametrize("field", ["tenant_id", "organization_id"])
    def test_missing_scope_is_rejected(self, field):
        with pytest.raises(TenantIsolationError) as exc_info:
            self.builder.fingerprint(self._ctx(**{field: "  "}))
        assert field in exc_info.value.details["missing"]

    def test_custom_volatile_parameters(self):
        builder = FingerprintBuilder(volatile_parameters=["template"])
        assert builder.fingerprint(self._ctx(parameters={"template": "a"})) == builder.fingerprint(
            self._ctx(parameters={"template": "b"})
        )
