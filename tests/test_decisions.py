import unittest

from model_builders import (
    codes,
    column,
    config,
    customer_order_document,
    customer_order_model,
    decide,
    fk,
    model_with,
    snapshot,
    unique,
)
from schema_tightening.decisions import IGNORE_NULLS
from schema_tightening.model import ConstraintKind, LogicalModel

NULLABILITY = ConstraintKind.NULLABILITY
FOREIGN_KEY = ConstraintKind.FOREIGN_KEY
UNIQUENESS = ConstraintKind.UNIQUENESS


class TestNullabilityScenarios(unittest.TestCase):
    def setUp(self):
        self.model = customer_order_model()

    def test_mandatory_column_without_nulls_tightens_under_evidence_gated(self):
        snap = snapshot([column("Customer", "Email", 10523, 0)])
        decision, plan, error = decide(self.model, snap, config(), NULLABILITY, "Customer", "Email")

        self.assertTrue(decision.tighten)
        self.assertEqual(codes(decision), ["MANDATORY", "DATA_NO_VIOLATIONS"])
        self.assertFalse(decision.requires_remediation)
        self.assertIsNone(plan)
        self.assertIsNone(error)
        self.assertEqual(decision.evidence.to_dict(), {"row_count": 10523, "null_count": 0})

    def test_mandatory_column_with_nulls_depends_on_mode(self):
        snap = snapshot([column("Customer", "Email", 10523, 47)])

        gated, _, _ = decide(self.model, snap, config("EvidenceGated"), NULLABILITY, "Customer", "Email")
        self.assertFalse(gated.tighten)
        self.assertEqual(codes(gated), ["MANDATORY", "DATA_HAS_VIOLATIONS"])

        aggressive, plan, _ = decide(self.model, snap, config("Aggressive"), NULLABILITY, "Customer", "Email")
        self.assertTrue(aggressive.tighten)
        self.assertTrue(aggressive.requires_remediation)
        self.assertEqual(codes(aggressive), ["MANDATORY", "DATA_HAS_VIOLATIONS", "REMEDIATE_BEFORE_TIGHTEN"])
        self.assertIsNotNone(plan)
        self.assertEqual(plan.affected_rows, 47)

    def test_missing_evidence_is_conservative_outside_aggressive(self):
        snap = snapshot()
        for mode in ("Cautious", "EvidenceGated"):
            decision, plan, _ = decide(self.model, snap, config(mode), NULLABILITY, "Customer", "Email")
            self.assertFalse(decision.tighten, mode)
            self.assertEqual(codes(decision), ["EVIDENCE_MISSING"])
            self.assertIsNone(plan)

    def test_missing_evidence_in_aggressive_tightens_only_mandatory(self):
        snap = snapshot()
        email, plan, _ = decide(self.model, snap, config("Aggressive"), NULLABILITY, "Customer", "Email")
        self.assertTrue(email.tighten)
        self.assertTrue(email.requires_remediation)
        self.assertEqual(codes(email), ["MANDATORY", "EVIDENCE_MISSING", "REMEDIATE_BEFORE_TIGHTEN"])
        self.assertTrue(plan.manual_review)
        self.assertIsNone(plan.affected_rows)

        name, _, _ = decide(self.model, snap, config("Aggressive"), NULLABILITY, "Customer", "Name")
        self.assertFalse(name.tighten)
        self.assertEqual(codes(name), ["EVIDENCE_MISSING"])

        # Clean index evidence does not stand in for the member column's own profile.
        indexed = snapshot(uniques=[unique("CustomerOrder", ["CustomerId", "OrderNumber"], 0)])
        number, plan, _ = decide(self.model, indexed, config("Aggressive"), NULLABILITY, "CustomerOrder", "OrderNumber")
        self.assertFalse(number.tighten)
        self.assertFalse(number.requires_remediation)
        self.assertEqual(codes(number), ["EVIDENCE_MISSING"])
        self.assertIsNone(plan)

    def test_null_rate_within_budget(self):
        snap = snapshot([column("Customer", "Email", 1000, 5)])
        cfg = config("EvidenceGated", POLICY={"NULL_BUDGET": 0.01})
        decision, plan, _ = decide(self.model, snap, cfg, NULLABILITY, "Customer", "Email")

        self.assertTrue(decision.tighten)
        self.assertFalse(decision.requires_remediation)
        self.assertEqual(codes(decision), ["MANDATORY", "NULL_BUDGET_EPSILON"])
        self.assertIsNone(plan)

    def test_null_rate_over_budget(self):
        snap = snapshot([column("Customer", "Email", 1000, 11)])
        cfg = config("EvidenceGated", POLICY={"NULL_BUDGET": 0.01})
        decision, _, _ = decide(self.model, snap, cfg, NULLABILITY, "Customer", "Email")
        self.assertFalse(decision.tighten)
        self.assertIn("DATA_HAS_VIOLATIONS", codes(decision))

    def test_cautious_ignores_metadata_claims(self):
        snap = snapshot([column("Customer", "Email", 100, 0)])
        decision, _, _ = decide(self.model, snap, config("Cautious"), NULLABILITY, "Customer", "Email")
        self.assertFalse(decision.tighten)
        self.assertEqual(codes(decision), ["MANDATORY", "DATA_NO_VIOLATIONS", "METADATA_NOT_TRUSTED"])

    def test_identity_tightens_in_every_mode(self):
        snap = snapshot([column("Customer", "Id", 100, 0, nullable=True)])
        for mode in ("Cautious", "EvidenceGated", "Aggressive"):
            decision, _, _ = decide(self.model, snap, config(mode), NULLABILITY, "Customer", "Id")
            self.assertTrue(decision.tighten, mode)
            self.assertEqual(codes(decision), ["IDENTITY", "MANDATORY", "DATA_NO_VIOLATIONS"])

    def test_physical_constraint_contradicted_by_data(self):
        snap = snapshot([column("Customer", "Name", 100, 3, nullable=False)])

        cautious, plan, _ = decide(self.model, snap, config("Cautious"), NULLABILITY, "Customer", "Name")
        self.assertTrue(cautious.tighten)
        self.assertFalse(cautious.requires_remediation)
        self.assertIsNone(plan)

        gated, plan, _ = decide(self.model, snap, config("EvidenceGated"), NULLABILITY, "Customer", "Name")
        self.assertTrue(gated.tighten)
        self.assertTrue(gated.requires_remediation)
        self.assertEqual(codes(gated), ["PHYSICAL_CONSTRAINT", "DATA_HAS_VIOLATIONS", "REMEDIATE_BEFORE_TIGHTEN"])
        self.assertEqual(plan.affected_rows, 3)

    def test_default_is_reported_but_not_a_claim(self):
        snap = snapshot([column("Customer", "Segment", 100, 0)])
        decision, _, _ = decide(self.model, snap, config("Aggressive"), NULLABILITY, "Customer", "Segment")
        self.assertFalse(decision.tighten)
        self.assertEqual(codes(decision), ["DEFAULT_PRESENT", "DATA_NO_VIOLATIONS"])

    def test_unique_membership_needs_a_clean_candidate(self):
        profile = column("CustomerOrder", "OrderNumber", 10, 0)

        bare, _, _ = decide(self.model, snapshot([profile]), config(), NULLABILITY, "CustomerOrder", "OrderNumber")
        self.assertFalse(bare.tighten)
        self.assertEqual(codes(bare), ["DATA_NO_VIOLATIONS"])

        duplicated = snapshot([profile], uniques=[unique("CustomerOrder", ["CustomerId", "OrderNumber"], 2)])
        decision, _, _ = decide(self.model, duplicated, config(), NULLABILITY, "CustomerOrder", "OrderNumber")
        self.assertFalse(decision.tighten)
        self.assertEqual(codes(decision), ["DATA_NO_VIOLATIONS"])

        clean = snapshot([profile], uniques=[unique("CustomerOrder", ["CustomerId", "OrderNumber"], 0)])
        decision, _, _ = decide(self.model, clean, config(), NULLABILITY, "CustomerOrder", "OrderNumber")
        self.assertTrue(decision.tighten)
        self.assertEqual(codes(decision), ["UNIQUE_DECLARED", "DATA_NO_VIOLATIONS"])

    def test_empty_table_counts_as_clean(self):
        snap = snapshot([column("Customer", "Email", 0, 0)])
        decision, _, _ = decide(self.model, snap, config(), NULLABILITY, "Customer", "Email")
        self.assertTrue(decision.tighten)
        self.assertIn("DATA_NO_VIOLATIONS", codes(decision))

    def test_keep_nullable_override_wins_in_every_mode(self):
        snap = snapshot([column("Customer", "Id", 100, 0, nullable=False)])
        for mode in ("Cautious", "EvidenceGated", "Aggressive"):
            cfg = config(mode, OVERRIDES={"KEEP_NULLABLE": ["DBO.customer.ID"]})
            decision, _, _ = decide(self.model, snap, cfg, NULLABILITY, "Customer", "Id")
            self.assertFalse(decision.tighten)
            self.assertEqual(codes(decision), ["NULLABILITY_OVERRIDE"])


class TestSupportingEvidenceClaims(unittest.TestCase):
    """Reference and unique declarations on optional columns."""

    def setUp(self):
        self.referrer = model_with(
            "CustomerOrder",
            {"name": "ReferrerId", "data_type": "LongInteger", "reference": {"entity": "Customer", "delete_rule": "Protect"}},
        )
        self.coded = model_with(
            "Customer",
            {"name": "Code", "data_type": "Text"},
            {"name": "IX_Customer_Code", "columns": ["Code"]},
        )

    def _referrer(self, snap, mode):
        return decide(self.referrer, snap, config(mode), NULLABILITY, "CustomerOrder", "ReferrerId")

    def test_optional_reference_without_evidence_stays_nullable(self):
        decision, plan, _ = self._referrer(snapshot(), "Aggressive")
        self.assertFalse(decision.tighten)
        self.assertFalse(decision.requires_remediation)
        self.assertEqual(codes(decision), ["EVIDENCE_MISSING"])
        self.assertIsNone(plan)

    def test_optional_reference_with_nulls_is_not_backfilled(self):
        snap = snapshot(
            [column("CustomerOrder", "ReferrerId", 100, 40)],
            [fk("CustomerOrder", "ReferrerId", "Customer", 0)],
        )
        for mode in ("EvidenceGated", "Aggressive"):
            decision, plan, _ = self._referrer(snap, mode)
            self.assertFalse(decision.tighten, mode)
            self.assertFalse(decision.requires_remediation, mode)
            self.assertEqual(codes(decision), ["REFERENCE_DECLARED", "DATA_HAS_VIOLATIONS"])
            self.assertIsNone(plan)

    def test_clean_reference_backs_a_clean_column(self):
        snap = snapshot(
            [column("CustomerOrder", "ReferrerId", 100, 0)],
            [fk("CustomerOrder", "ReferrerId", "Customer", 0)],
        )
        decision, _, _ = self._referrer(snap, "EvidenceGated")
        self.assertTrue(decision.tighten)
        self.assertEqual(codes(decision), ["REFERENCE_DECLARED", "DATA_NO_VIOLATIONS"])

    def test_reference_with_orphans_or_blockers_is_no_claim(self):
        profile = column("CustomerOrder", "ReferrerId", 100, 0)

        orphaned = snapshot([profile], [fk("CustomerOrder", "ReferrerId", "Customer", 5)])
        decision, _, _ = self._referrer(orphaned, "EvidenceGated")
        self.assertFalse(decision.tighten)
        self.assertEqual(codes(decision), ["DATA_NO_VIOLATIONS"])

        clean = snapshot([profile], [fk("CustomerOrder", "ReferrerId", "Customer", 0)])
        cfg = config("EvidenceGated", FOREIGN_KEYS={"ENABLE_CREATION": False})
        decision, _, _ = decide(self.referrer, clean, cfg, NULLABILITY, "CustomerOrder", "ReferrerId")
        self.assertFalse(decision.tighten)

        # An enforced constraint needs no creation.
        enforced = snapshot([profile], [fk("CustomerOrder", "ReferrerId", "Customer", 0, has_constraint=True)])
        decision, _, _ = decide(self.referrer, enforced, cfg, NULLABILITY, "CustomerOrder", "ReferrerId")
        self.assertTrue(decision.tighten)

    def test_nullable_unique_member_with_nulls_is_not_backfilled(self):
        snap = snapshot([column("Customer", "Code", 100, 40)], uniques=[unique("Customer", ["Code"], 0)])
        decision, plan, _ = decide(self.coded, snap, config("Aggressive"), NULLABILITY, "Customer", "Code")
        self.assertFalse(decision.tighten)
        self.assertFalse(decision.requires_remediation)
        self.assertEqual(codes(decision), ["UNIQUE_DECLARED", "DATA_HAS_VIOLATIONS"])
        self.assertIsNone(plan)

        # The filtered unique constraint itself is still recommended.
        index, _, _ = decide(self.coded, snap, config("Aggressive"), UNIQUENESS, "Customer", "IX_Customer_Code")
        self.assertTrue(index.tighten)
        self.assertIn(IGNORE_NULLS, index.annotations)


class TestForeignKeyScenarios(unittest.TestCase):
    def setUp(self):
        self.model = customer_order_model()

    def test_clean_relationship_tightens_regardless_of_mode(self):
        snap = snapshot(foreign_keys=[fk("CustomerOrder", "CustomerId", "Customer", 0)])
        for mode in ("Cautious", "EvidenceGated", "Aggressive"):
            decision, _, _ = decide(self.model, snap, config(mode), FOREIGN_KEY, "CustomerOrder", "CustomerId")
            self.assertTrue(decision.tighten, mode)
            self.assertEqual(codes(decision), ["REFERENCE_DECLARED", "DATA_NO_VIOLATIONS"])

    def test_orphans_block_cautious_and_remediate_in_aggressive(self):
        snap = snapshot(foreign_keys=[fk("CustomerOrder", "CustomerId", "Customer", 12)])

        cautious, _, _ = decide(self.model, snap, config("Cautious"), FOREIGN_KEY, "CustomerOrder", "CustomerId")
        self.assertFalse(cautious.tighten)
        self.assertEqual(codes(cautious), ["REFERENCE_DECLARED", "DATA_HAS_VIOLATIONS"])

        aggressive, plan, _ = decide(
            self.model, snap, config("Aggressive"), FOREIGN_KEY, "CustomerOrder", "CustomerId"
        )
        self.assertTrue(aggressive.tighten)
        self.assertTrue(aggressive.requires_remediation)
        self.assertEqual(plan.affected_rows, 12)
        self.assertEqual(
            [o.strategy.value for o in plan.options], ["DELETE_ORPHANS", "REASSIGN_TO_SENTINEL_PARENT"]
        )

    def test_ignore_delete_rule_blocks(self):
        model = customer_order_document_with(delete_rule="Ignore")
        snap = snapshot(foreign_keys=[fk("CustomerOrder", "CustomerId", "Customer", 0)])
        decision, _, _ = decide(model, snap, config("Aggressive"), FOREIGN_KEY, "CustomerOrder", "CustomerId")
        self.assertFalse(decision.tighten)
        self.assertEqual(codes(decision), ["REFERENCE_DECLARED", "DELETE_RULE_IGNORE", "DATA_NO_VIOLATIONS"])

    def test_missing_delete_rule_follows_configuration(self):
        model = customer_order_document_with(delete_rule=None)
        snap = snapshot(foreign_keys=[fk("CustomerOrder", "CustomerId", "Customer", 0)])

        ignored, _, _ = decide(model, snap, config(), FOREIGN_KEY, "CustomerOrder", "CustomerId")
        self.assertFalse(ignored.tighten)
        self.assertIn("DELETE_RULE_IGNORE", codes(ignored))

        cfg = config(FOREIGN_KEYS={"MISSING_DELETE_RULE": "protect"})
        protected, _, _ = decide(model, snap, cfg, FOREIGN_KEY, "CustomerOrder", "CustomerId")
        self.assertTrue(protected.tighten)

    def test_existing_constraint_is_kept_despite_blockers(self):
        model = customer_order_document_with(delete_rule="Ignore")
        snap = snapshot(foreign_keys=[fk("CustomerOrder", "CustomerId", "Customer", 0, has_constraint=True)])
        decision, _, _ = decide(model, snap, config("Cautious"), FOREIGN_KEY, "CustomerOrder", "CustomerId")
        self.assertTrue(decision.tighten)
        self.assertEqual(codes(decision), ["REFERENCE_DECLARED", "PHYSICAL_CONSTRAINT", "DATA_NO_VIOLATIONS"])

    def test_creation_disabled(self):
        snap = snapshot(foreign_keys=[fk("CustomerOrder", "CustomerId", "Customer", 0)])
        cfg = config(FOREIGN_KEYS={"ENABLE_CREATION": False})
        decision, _, _ = decide(self.model, snap, cfg, FOREIGN_KEY, "CustomerOrder", "CustomerId")
        self.assertFalse(decision.tighten)
        self.assertIn("FK_CREATION_DISABLED", codes(decision))

    def test_missing_evidence(self):
        snap = snapshot()
        for mode in ("Cautious", "EvidenceGated"):
            decision, _, _ = decide(self.model, snap, config(mode), FOREIGN_KEY, "CustomerOrder", "CustomerId")
            self.assertFalse(decision.tighten)
            self.assertEqual(codes(decision), ["REFERENCE_DECLARED", "EVIDENCE_MISSING"])

        decision, plan, _ = decide(self.model, snap, config("Aggressive"), FOREIGN_KEY, "CustomerOrder", "CustomerId")
        self.assertTrue(decision.tighten)
        self.assertTrue(decision.requires_remediation)
        self.assertTrue(plan.manual_review)


class TestUniquenessScenarios(unittest.TestCase):
    def setUp(self):
        self.model = customer_order_model()

    def test_clean_nullable_candidate_gets_ignore_nulls(self):
        snap = snapshot([column("Customer", "Email", 100, 4, nullable=True)], uniques=[unique("Customer", ["Email"], 0)])
        decision, _, _ = decide(self.model, snap, config(), UNIQUENESS, "Customer", "IX_Customer_Email")
        self.assertTrue(decision.tighten)
        self.assertEqual(codes(decision), ["UNIQUE_DECLARED", "DATA_NO_VIOLATIONS"])
        self.assertEqual(decision.annotations, (IGNORE_NULLS,))

    def test_non_nullable_members_have_no_annotation(self):
        snap = snapshot([column("Customer", "Email", 100, 0, nullable=False)], uniques=[unique("Customer", ["Email"], 0)])
        decision, _, _ = decide(self.model, snap, config(), UNIQUENESS, "Customer", "IX_Customer_Email")
        self.assertEqual(decision.annotations, ())

    def test_duplicates_never_tighten_without_remediation(self):
        snap = snapshot(uniques=[unique("Customer", ["Email"], 3, rows=7)])
        for mode in ("Cautious", "EvidenceGated"):
            decision, plan, _ = decide(self.model, snap, config(mode), UNIQUENESS, "Customer", "IX_Customer_Email")
            self.assertFalse(decision.tighten)
            self.assertIsNone(plan)

        decision, plan, _ = decide(self.model, snap, config("Aggressive"), UNIQUENESS, "Customer", "IX_Customer_Email")
        self.assertTrue(decision.tighten)
        self.assertTrue(decision.requires_remediation)
        self.assertEqual(plan.affected_rows, 4)

    def test_missing_evidence_never_tightens(self):
        for mode in ("Cautious", "EvidenceGated", "Aggressive"):
            decision, _, _ = decide(
                self.model, snapshot(), config(mode), UNIQUENESS, "Customer", "IX_Customer_Email"
            )
            self.assertFalse(decision.tighten)
            self.assertEqual(codes(decision), ["UNIQUE_DECLARED", "EVIDENCE_MISSING"])

    def test_multi_column_toggle(self):
        snap = snapshot(uniques=[unique("CustomerOrder", ["CustomerId", "OrderNumber"], 0)])
        cfg = config(UNIQUENESS={"ENFORCE_MULTI_COLUMN": False})
        decision, _, _ = decide(self.model, snap, cfg, UNIQUENESS, "CustomerOrder", "IX_Order_Customer_Number")
        self.assertFalse(decision.tighten)
        self.assertEqual(codes(decision), ["UNIQUE_DECLARED", "UNIQUE_POLICY_DISABLED", "DATA_NO_VIOLATIONS"])

    def test_physical_unique_with_duplicates_in_evidence_gated(self):
        snap = snapshot(uniques=[unique("Customer", ["Email"], 1, physical=True)])
        decision, plan, _ = decide(self.model, snap, config(), UNIQUENESS, "Customer", "IX_Customer_Email")
        self.assertTrue(decision.tighten)
        self.assertTrue(decision.requires_remediation)
        self.assertIsNotNone(plan)


def customer_order_document_with(delete_rule):
    document = customer_order_document()
    reference = document["entities"][1]["attributes"][1]["reference"]
    if delete_rule is None:
        reference.pop("delete_rule")
    else:
        reference["delete_rule"] = delete_rule
    return LogicalModel.from_dict(document)


if __name__ == "__main__":
    unittest.main()
