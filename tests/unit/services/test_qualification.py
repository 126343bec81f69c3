"""Unit tests for services.supervisor.qualification module."""

import pytest
from pydantic import ValidationError

from keepalive_monitor.models.target import TargetID, TargetInfo
from keepalive_monitor.services.supervisor.qualification import (
    SelectionPolicy,
    disqualification_reason,
    qualifies,
)


TID = TargetID("shop", "web")

ALL = SelectionPolicy()
CLASSIFIED_ONLY = SelectionPolicy(default_class=False)
NGINX = SelectionPolicy(ingress_class="nginx")
NGINX_STRICT = SelectionPolicy(default_class=False, ingress_class="nginx")


class TestSelectionPolicy:
    def test_defaults(self):
        assert ALL.default_class is True
        assert ALL.ingress_class == ""

    def test_frozen(self):
        with pytest.raises(ValidationError):
            ALL.ingress_class = "nginx"


class TestDisqualificationReason:
    """Qualification decisions across class, opt-out and deletion."""

    @pytest.mark.parametrize(
        ("info", "policy", "expected"),
        [
            (TargetInfo(TID), ALL, None),
            (TargetInfo(TID), CLASSIFIED_ONLY, "no_class"),
            (TargetInfo(TID), NGINX, None),
            (TargetInfo(TID), NGINX_STRICT, "no_class"),
            (TargetInfo(TID, explicit_class="nginx"), NGINX, None),
            (TargetInfo(TID, explicit_class="traefik"), NGINX, "class_mismatch"),
            (TargetInfo(TID, explicit_class="traefik"), ALL, None),
            (TargetInfo(TID, explicit_class="traefik"), CLASSIFIED_ONLY, None),
            (TargetInfo(TID, class_annotation="nginx"), NGINX_STRICT, None),
            (TargetInfo(TID, class_annotation="nginx", explicit_class="traefik"), NGINX, "class_mismatch"),
            (TargetInfo(TID, opt_out=True), ALL, "opted_out"),
            (TargetInfo(TID, explicit_class="nginx", opt_out=True), NGINX, "opted_out"),
            (TargetInfo(TID, deletion_requested=True), ALL, "deleted"),
            (TargetInfo(TID, opt_out=True, deletion_requested=True), ALL, "deleted"),
        ],
    )
    def test_reason(self, info, policy, expected):
        assert disqualification_reason(info, policy) == expected
        assert qualifies(info, policy) is (expected is None)
