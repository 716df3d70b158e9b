"""
Tests for entity and jurisdiction risk calculation.
"""

from chainscreen.attribution.records import EntityProfile
from chainscreen.scoring.entity import EntityRiskCalculator
from chainscreen.scoring.factors import MaximumImpact, Modifier, NumericImpact, Severity
from chainscreen.scoring.jurisdiction import JurisdictionRiskCalculator


class TestEntityRiskCalculator:
    """Tests for EntityRiskCalculator."""

    def test_base_score_from_catalog(self, reference_snapshot):
        """A plain entity scores its catalog base."""
        result = EntityRiskCalculator().calculate("exchange", [], reference_snapshot)

        assert result.aggregate_score == 20
        assert len(result.factors) == 1
        assert result.factors[0].id == "entity-type"
        assert result.factors[0].severity == Severity.LOW

    def test_numeric_modifiers_add(self, reference_snapshot):
        """Numeric tag modifiers add to the base score."""
        result = EntityRiskCalculator().calculate(
            "gambling", ["No KYC", "mixer"], reference_snapshot
        )

        # 50 + 10 + 20
        assert result.aggregate_score == 80
        ids = [f.id for f in result.factors]
        assert ids == ["entity-type", "modifier-no-kyc", "modifier-mixer"]

    def test_score_is_clamped(self, reference_snapshot):
        """Adding modifiers never pushes the score past 100."""
        result = EntityRiskCalculator().calculate(
            "darknet market", ["ransomware", "mixer"], reference_snapshot
        )

        assert result.aggregate_score == 100

    def test_maximum_modifier_forces_high(self, reference_snapshot):
        """A sanction tag forces 100 whatever the base score."""
        result = EntityRiskCalculator().calculate(
            "exchange", ["OFAC Sanctioned"], reference_snapshot
        )

        assert result.aggregate_score == 100
        modifier = result.get("modifier-ofac-sanctioned")
        assert modifier.severity == Severity.HIGH
        assert modifier.to_dict()["modifiers"] == [
            {"type": "ofac sanctioned", "impact": "Maximum"}
        ]

    def test_negative_modifier_lowers_score(self, reference_snapshot):
        """Explicit negative modifiers reduce the score, floored at 0."""
        calculator = EntityRiskCalculator()

        result = calculator.calculate(
            "exchange", [], reference_snapshot,
            modifiers=[Modifier("Regulated", NumericImpact(-30))],
        )

        assert result.aggregate_score == 0

    def test_unknown_type_scores_zero(self, reference_snapshot):
        """Types missing from the catalog score 0 and are flagged."""
        result = EntityRiskCalculator().calculate("casino ship", [], reference_snapshot)

        assert result.aggregate_score == 0
        assert result.factors[0].details == {"unknown_type": True}

    def test_unattributed_scores_zero(self, reference_snapshot):
        """No entity means a single zero factor."""
        result = EntityRiskCalculator().calculate(None, ["mixer"], reference_snapshot)

        assert result.aggregate_score == 0
        assert result.factors[0].entity_type == "unattributed"

    def test_custom_tag_table(self, reference_snapshot):
        """Callers can replace the tag modifier table."""
        calculator = EntityRiskCalculator(tag_modifiers={"High Volume": MaximumImpact()})

        result = calculator.calculate("exchange", ["high volume", "mixer"], reference_snapshot)

        assert result.aggregate_score == 100
        assert result.get("modifier-mixer") is None

    def test_profile_without_kyc_gets_modifier(self, reference_snapshot):
        """Profiles flagged no-KYC pick up the +10 modifier."""
        profile = EntityProfile("e1", entity_type="exchange", no_kyc_required=True)

        result = EntityRiskCalculator().calculate_for_profile(profile, reference_snapshot)

        assert result.aggregate_score == 30
        assert result.get("modifier-no-kyc") is not None


class TestJurisdictionRiskCalculator:
    """Tests for JurisdictionRiskCalculator."""

    def test_max_of_countries(self, reference_snapshot):
        """The riskiest country sets the collection score."""
        result = JurisdictionRiskCalculator().calculate(["US", "PA"], reference_snapshot)

        # PA is grey listed: 45 + 15
        assert result.aggregate_score == 60
        assert [f.id for f in result.factors] == ["jurisdiction-us", "jurisdiction-pa"]

    def test_black_list_caps_at_100(self, reference_snapshot):
        """Black listed countries add 30, capped at 100."""
        result = JurisdictionRiskCalculator().calculate(["KP"], reference_snapshot)

        assert result.aggregate_score == 100
        assert result.factors[0].severity == Severity.HIGH

    def test_duplicates_collapse(self, reference_snapshot):
        """Repeated codes in any case produce one factor."""
        result = JurisdictionRiskCalculator().calculate(["us", "US ", "Us"], reference_snapshot)

        assert len(result.factors) == 1

    def test_missing_country_scores_zero(self, reference_snapshot):
        """Countries without data score 0."""
        result = JurisdictionRiskCalculator().calculate(["ZZ"], reference_snapshot)

        assert result.aggregate_score == 0
        assert result.factors[0].details == {"missing_data": True}

    def test_no_countries(self, reference_snapshot):
        """No countries means no factors and a zero score."""
        result = JurisdictionRiskCalculator().calculate([], reference_snapshot)

        assert result.factors == []
        assert result.aggregate_score == 0
