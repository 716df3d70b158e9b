"""
Unit tests for application settings.
"""

import pytest
from pydantic import ValidationError

from chainscreen.config import Settings

AUDIT_KEY = "unit-test-audit-key-000000"


class TestSettings:
    """Tests for settings validation."""

    def test_defaults(self):
        """Default weights and traversal bounds build valid objects."""
        config = Settings(audit_hmac_key=AUDIT_KEY)

        weights = config.scoring_weights()
        traversal = config.traversal_config()

        assert (weights.entity, weights.jurisdiction, weights.transaction) == (0.4, 0.4, 0.2)
        assert traversal.max_hops == 3
        assert traversal.hop_weight_decay == 0.5

    def test_weights_must_sum_to_one(self):
        """Weights that do not sum to 1 fail at load time."""
        with pytest.raises(ValidationError):
            Settings(audit_hmac_key=AUDIT_KEY, weight_entity=0.5, weight_jurisdiction=0.5)

    @pytest.mark.parametrize("decay", [0, -0.5, 1.5])
    def test_decay_bounds(self, decay):
        """Hop decay must be in (0, 1]."""
        with pytest.raises(ValidationError):
            Settings(audit_hmac_key=AUDIT_KEY, hop_weight_decay=decay)

    def test_negative_hops_rejected(self):
        """Traversal depth cannot be negative."""
        with pytest.raises(ValidationError):
            Settings(audit_hmac_key=AUDIT_KEY, max_hops=-1)

    def test_short_audit_key_rejected(self):
        """Audit keys shorter than 16 characters are refused."""
        with pytest.raises(ValidationError):
            Settings(audit_hmac_key="short")

    def test_missing_audit_key_generates_one(self):
        """Without a key a temporary one is generated with a warning."""
        with pytest.warns(UserWarning):
            config = Settings(audit_hmac_key="")

        assert len(config.audit_hmac_key) >= 32

    def test_debug_forbidden_in_production(self):
        """Production must not run in debug mode."""
        with pytest.raises(ValidationError):
            Settings(audit_hmac_key=AUDIT_KEY, environment="production", debug=True)
