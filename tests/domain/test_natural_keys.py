"""Unit tests for natural-key functions and reference extraction."""

from datetime import date

import pytest

from rx_loader.domain.natural_keys import (
    KEY_ATTRIBUTES,
    KEY_COLUMNS,
    drug_key,
    insurance_plan_key,
    key_rank,
    location_key,
    natural_key,
    organization_key,
    patient_key,
    pharmacy_key,
    prescriber_key,
)
from rx_loader.domain.records import EntityKind
from rx_loader.domain.references import (
    extract_candidates,
    reference_slots,
    split_npi_dea,
    split_prescriber_name,
)


class TestNaturalKeys:
    """Test key construction per entity kind."""

    def test_pharmacy_priority(self):
        """NPI wins over NABP, NABP over name."""
        assert pharmacy_key({"npi_number": 1234567890, "nabp_number": 312345, "pharmacy_name": "X"}) == "npi:1234567890"
        assert pharmacy_key({"nabp_number": "312345", "pharmacy_name": "X"}) == "nabp:312345"
        assert pharmacy_key({"pharmacy_name": "  Main St  PHARMACY"}) == "name:main st pharmacy"

    def test_pharmacy_without_identifiers(self):
        """No identifying attribute gives no key."""
        assert pharmacy_key({"chain_pharmacy": "CVS"}) is None

    def test_text_and_number_give_same_key(self):
        """A stored BIGINT and a CSV string canonicalize identically."""
        assert pharmacy_key({"npi_number": "1234567890"}) == pharmacy_key({"npi_number": 1234567890})

    def test_organization_priority(self):
        """OPAID, then organization identifier, then name."""
        assert organization_key({"opaid": "op-1", "entity_name": "Health"}) == "opaid:OP-1"
        assert organization_key({"organization_identifier": "org 9"}) == "org:ORG 9"
        assert organization_key({"entity_name": "Mercy  Health"}) == "name:mercy health"

    def test_prescriber_keys(self):
        """NPI, then DEA, then last|first."""
        assert prescriber_key({"npi": 1111111111, "dea_number": "AB1234563"}) == "npi:1111111111"
        assert prescriber_key({"dea_number": "ab1234563"}) == "dea:AB1234563"
        assert prescriber_key({"last_name": "House", "first_name": "Greg"}) == "name:house|greg"
        assert prescriber_key({"last_name": "House"}) == "name:house|"

    def test_location_keys(self):
        """Identifier, then name."""
        assert location_key({"location_identifier": "loc-1", "location_name": "Main"}) == "id:LOC-1"
        assert location_key({"location_name": "Main Clinic"}) == "name:main clinic"

    def test_drug_key_is_canonical_ndc(self):
        """Hyphenated and padded NDCs produce one key."""
        assert drug_key({"ndc_code": "0002-3227-30"}) == drug_key({"ndc_code": "00002322730"})
        assert drug_key({"ndc_code": None}) is None

    def test_patient_keys(self):
        """MRN, then external id, then first|last|dob."""
        assert patient_key({"mrn": "m1", "patient_id_external": "E1"}) == "mrn:M1"
        assert patient_key({"patient_id_external": "e1"}) == "ext:E1"
        assert patient_key({
            "first_name": "Jane", "last_name": "Doe", "date_of_birth": date(1980, 2, 1)
        }) == "name:jane|doe|1980-02-01"
        assert patient_key({"first_name": "Jane", "last_name": "Doe", "date_of_birth": "1980-02-01"}) == \
            "name:jane|doe|1980-02-01"
        assert patient_key({"first_name": "Jane"}) is None

    def test_insurance_plan_key(self):
        """Company plus BIN plus PCN."""
        assert insurance_plan_key({"insurance_company": "Aetna", "bin": "610502", "pcn": "ab"}) == \
            "plan:aetna|610502|AB"
        assert insurance_plan_key({"insurance_company": "Aetna"}) == "plan:aetna||"
        assert insurance_plan_key({"bin": "610502"}) is None

    def test_kinds_do_not_share_keyspaces(self):
        """Equal identifiers of different kinds live in kind-scoped caches; keys may coincide."""
        assert natural_key(EntityKind.PHARMACY, {"npi_number": 1}) == natural_key(EntityKind.PRESCRIBER, {"npi": 1})

    def test_key_rank(self):
        """Rank is the position of the attribute that produced the key."""
        assert key_rank(EntityKind.PHARMACY, {"npi_number": 1234567890}) == 0
        assert key_rank(EntityKind.PHARMACY, {"pharmacy_name": "X"}) == 2
        assert key_rank(EntityKind.PHARMACY, {}) == 3

    @pytest.mark.parametrize("kind", list(EntityKind))
    def test_every_kind_declares_keys_and_columns(self, kind):
        """Each kind has identifying attributes and the columns to read them from."""
        assert KEY_ATTRIBUTES[kind]
        assert KEY_COLUMNS[kind]


class TestClaimFieldSplitting:
    """Test parsing of claims-specific composite fields."""

    @pytest.mark.parametrize("name, expected", [
        ("SMITH, JOHN", ("JOHN", "SMITH")),
        ("John Smith", ("John", "Smith")),
        ("John Q Smith", ("John", "Smith")),
        ("Smith", (None, "Smith")),
        (None, (None, None)),
    ])
    def test_split_prescriber_name(self, name, expected):
        """Last-comma-first and first-last forms are both understood."""
        assert split_prescriber_name(name) == expected

    def test_split_npi_dea(self):
        """Digits are an NPI; anything else is a DEA number."""
        assert split_npi_dea("1234567893") == (1234567893, None)
        assert split_npi_dea("ab1234563") == (None, "AB1234563")
        assert split_npi_dea(None) == (None, None)


class TestExtractCandidates:
    """Test candidate extraction from typed records."""

    def test_distinct_by_natural_key(self, make_prescription):
        """Repeated sightings of one entity produce one candidate."""
        records = [
            make_prescription(pharmacy_name="Main St Pharmacy", pharmacy_npi=1234567890),
            make_prescription(pharmacy_name="Other Name", pharmacy_npi=1234567890),
            make_prescription(pharmacy_name="Main St Pharmacy"),
        ]
        candidates = extract_candidates(records, EntityKind.PHARMACY)
        assert [c.key for c in candidates] == ["npi:1234567890", "name:main st pharmacy"]
        assert candidates[0].attributes["pharmacy_name"] == "Main St Pharmacy"

    def test_both_insurance_slots_contribute(self, make_prescription):
        """Primary and secondary plans are candidates of the same kind."""
        record = make_prescription(
            primary_insurance_company="Aetna", primary_bin="610502",
            secondary_insurance_company="Medicaid", secondary_is_medicaid=True,
        )
        candidates = extract_candidates([record], EntityKind.INSURANCE_PLAN)
        assert {c.attributes["insurance_company"] for c in candidates} == {"Aetna", "Medicaid"}
        secondary = next(c for c in candidates if c.attributes["insurance_company"] == "Medicaid")
        assert secondary.attributes["is_primary"] is False
        assert secondary.attributes["is_medicaid"] is True

    def test_location_references_organization(self, make_prescription):
        """A location carries the organization key it belongs to."""
        record = make_prescription(organization_identifier="ORG1", location_identifier="L1", location_name="Main")
        [location] = extract_candidates([record], EntityKind.LOCATION)
        assert location.references["covered_entity_id"] == (EntityKind.ORGANIZATION, "opaid:ORG1")

    def test_claim_pharmacy_npi_or_nabp(self, make_claim):
        """Ten digits is an NPI, anything shorter a NABP number."""
        by_npi = extract_candidates([make_claim(pharmacy_nabp_npi=1234567890)], EntityKind.PHARMACY)
        by_nabp = extract_candidates([make_claim(pharmacy_nabp_npi=312345)], EntityKind.PHARMACY)
        assert by_npi[0].attributes["npi_number"] == 1234567890
        assert by_npi[0].attributes["nabp_number"] is None
        assert by_nabp[0].attributes["nabp_number"] == 312345
        assert by_nabp[0].attributes["npi_number"] is None

    def test_claim_patient_requires_name(self, make_claim):
        """Claims without a patient name have no patient candidate."""
        assert extract_candidates([make_claim(medical_record_number="M1")], EntityKind.PATIENT) == []

    def test_reference_slots_by_type(self, make_prescription, make_claim):
        """Prescriptions fill eight reference slots, claims five."""
        assert len(reference_slots(make_prescription())) == 8
        assert len(reference_slots(make_claim())) == 5
        with pytest.raises(TypeError):
            reference_slots(object())
