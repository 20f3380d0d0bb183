"""Reference extraction from typed records.

Each fact record points at up to eight reference entities. A ReferenceSlot
names the fact column that receives the resolved id, the entity kind, and the
function that derives the entity candidate from a typed record.

The resolver walks the slots to collect candidates; the fact builder walks the
same slots to look the resolved ids back up. Because both sides call the same
extractor, the natural key used at lookup time is the one used at resolution
time.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from rx_loader.domain.natural_keys import natural_key
from rx_loader.domain.normalizers import normalize_identifier, normalize_integer, normalize_text
from rx_loader.domain.records import ClaimEvent, EntityKind, PrescriptionEvent

TypedRecord = Union[PrescriptionEvent, ClaimEvent]

NPI_LENGTH = 10
UNKNOWN_NAME = "Unknown"


@dataclass
class EntityCandidate:
    """A reference entity as sighted in one source row.

    Attributes:
        kind: Entity kind
        attributes: Column -> value, ready to insert (without id and references)
        references: Column -> (kind, natural key) of entities this one points to,
            resolved from prior caches when the row is inserted
    """

    kind: EntityKind
    attributes: dict
    references: dict[str, tuple[EntityKind, str]] = field(default_factory=dict)

    @property
    def key(self) -> Optional[str]:
        return natural_key(self.kind, self.attributes)


Extractor = Callable[[TypedRecord], Optional[EntityCandidate]]


@dataclass(frozen=True)
class ReferenceSlot:
    """Fact column filled from the resolution cache of one entity kind."""

    fact_field: str
    kind: EntityKind
    extract: Extractor

    def key_for(self, record: TypedRecord) -> Optional[str]:
        candidate = self.extract(record)
        return candidate.key if candidate is not None else None


# ============================================================================
# Prescription extractors
# ============================================================================

def _prescription_organization(record: PrescriptionEvent) -> Optional[EntityCandidate]:
    identifier = record.organization_identifier
    if not identifier:
        return None
    return EntityCandidate(
        EntityKind.ORGANIZATION,
        {"opaid": identifier, "organization_identifier": identifier, "entity_name": identifier},
    )


def _prescription_pharmacy(record: PrescriptionEvent) -> Optional[EntityCandidate]:
    if not (record.pharmacy_name or record.pharmacy_npi or record.pharmacy_nabp):
        return None
    name = record.pharmacy_name or f"Pharmacy {record.pharmacy_npi or record.pharmacy_nabp}"
    return EntityCandidate(
        EntityKind.PHARMACY,
        {
            "pharmacy_name": name,
            "chain_pharmacy": None,
            "npi_number": record.pharmacy_npi,
            "nabp_number": record.pharmacy_nabp,
        },
    )


def _prescription_prescriber(record: PrescriptionEvent) -> Optional[EntityCandidate]:
    return EntityCandidate(
        EntityKind.PRESCRIBER,
        {
            "first_name": record.prescriber_first_name,
            "middle_name": record.prescriber_middle_name,
            "last_name": record.prescriber_last_name,
            "suffix": record.prescriber_suffix,
            "npi": record.prescriber_npi,
            "dea_number": record.prescriber_dea_number,
        },
    )


def _prescription_location(record: PrescriptionEvent) -> Optional[EntityCandidate]:
    if not (record.location_identifier or record.location_name):
        return None
    candidate = EntityCandidate(
        EntityKind.LOCATION,
        {
            "location_identifier": record.location_identifier,
            "location_name": record.location_name or record.location_identifier or UNKNOWN_NAME,
        },
    )
    organization = _prescription_organization(record)
    if organization is not None and organization.key is not None:
        candidate.references["covered_entity_id"] = (EntityKind.ORGANIZATION, organization.key)
    return candidate


def _prescription_drug(record: PrescriptionEvent) -> Optional[EntityCandidate]:
    if not record.ndc_code:
        return None
    return EntityCandidate(
        EntityKind.DRUG,
        {
            "ndc_code": record.ndc_code,
            "drug_name": record.medication_name,
            "manufacturer_name": None,
            "package_size": None,
            "drug_indicator": None,
            "drug_form": record.drug_form,
            "dose": record.dose,
            "dose_units": record.dose_units,
            "route_of_administration": record.route_of_administration,
        },
    )


def _prescription_patient(record: PrescriptionEvent) -> Optional[EntityCandidate]:
    return EntityCandidate(
        EntityKind.PATIENT,
        {
            "mrn": record.patient_mrn,
            "patient_id_external": None,
            "first_name": record.patient_first_name,
            "middle_name": record.patient_middle_name,
            "last_name": record.patient_last_name,
            "suffix": record.patient_suffix,
            "date_of_birth": record.patient_date_of_birth,
            "gender": None,
        },
    )


def _plan_candidate(
    company: Optional[str],
    group: Optional[str],
    bin_number: Optional[str],
    pcn: Optional[str],
    is_medicaid: bool,
    is_primary: bool,
) -> Optional[EntityCandidate]:
    if not company:
        return None
    return EntityCandidate(
        EntityKind.INSURANCE_PLAN,
        {
            "insurance_company": company,
            "plan_group": group,
            "bin": bin_number,
            "pcn": pcn,
            "is_medicaid": is_medicaid,
            "is_primary": is_primary,
        },
    )


def _prescription_primary_plan(record: PrescriptionEvent) -> Optional[EntityCandidate]:
    return _plan_candidate(
        record.primary_insurance_company,
        record.primary_group,
        record.primary_bin,
        record.primary_pcn,
        record.primary_is_medicaid,
        True,
    )


def _prescription_secondary_plan(record: PrescriptionEvent) -> Optional[EntityCandidate]:
    return _plan_candidate(
        record.secondary_insurance_company,
        record.secondary_group,
        record.secondary_bin,
        record.secondary_pcn,
        record.secondary_is_medicaid,
        False,
    )


# ============================================================================
# Claim extractors
# ============================================================================

def split_prescriber_name(name: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Split a claims prescriber name into (first, last).

    ``"SMITH, JOHN"`` is last-comma-first; ``"John Smith"`` is first then last;
    a single token is taken as the last name.
    """
    text = normalize_text(name)
    if text is None:
        return None, None
    if "," in text:
        last, _, first = text.partition(",")
        return normalize_text(first), normalize_text(last)
    parts = text.split()
    if len(parts) == 1:
        return None, parts[0]
    return parts[0], parts[-1]


def split_npi_dea(value: Optional[str]) -> tuple[Optional[int], Optional[str]]:
    """A purely numeric prescriber id is an NPI; anything else is a DEA number."""
    text = normalize_text(value)
    if text is None:
        return None, None
    if re.fullmatch(r"\d+", text):
        return normalize_integer(text), None
    return None, normalize_identifier(text)


def _claim_organization(record: ClaimEvent) -> Optional[EntityCandidate]:
    opaid = record.opaid or record.covered_entity_name
    if not opaid:
        return None
    return EntityCandidate(
        EntityKind.ORGANIZATION,
        {
            "opaid": opaid,
            "organization_identifier": None,
            "entity_name": record.covered_entity_name or opaid,
        },
    )


def _claim_pharmacy(record: ClaimEvent) -> Optional[EntityCandidate]:
    if not (record.pharmacy_name or record.pharmacy_nabp_npi):
        return None
    npi_number = nabp_number = None
    if record.pharmacy_nabp_npi is not None:
        if len(str(record.pharmacy_nabp_npi)) == NPI_LENGTH:
            npi_number = record.pharmacy_nabp_npi
        else:
            nabp_number = record.pharmacy_nabp_npi
    return EntityCandidate(
        EntityKind.PHARMACY,
        {
            "pharmacy_name": record.pharmacy_name or f"Pharmacy {record.pharmacy_nabp_npi}",
            "chain_pharmacy": record.chain_pharmacy,
            "npi_number": npi_number,
            "nabp_number": nabp_number,
        },
    )


def _claim_prescriber(record: ClaimEvent) -> Optional[EntityCandidate]:
    first, last = split_prescriber_name(record.prescriber_name)
    npi, dea_number = split_npi_dea(record.prescriber_npi_dea)
    if last is None and npi is None and dea_number is None:
        return None
    return EntityCandidate(
        EntityKind.PRESCRIBER,
        {
            "first_name": first,
            "middle_name": None,
            "last_name": last or UNKNOWN_NAME,
            "suffix": None,
            "npi": npi,
            "dea_number": dea_number,
        },
    )


def _claim_drug(record: ClaimEvent) -> Optional[EntityCandidate]:
    if not record.ndc:
        return None
    return EntityCandidate(
        EntityKind.DRUG,
        {
            "ndc_code": record.ndc,
            "drug_name": record.drug_name,
            "manufacturer_name": record.manufacturer_name,
            "package_size": record.package_size,
            "drug_indicator": record.drug_indicator,
            "drug_form": None,
            "dose": None,
            "dose_units": None,
            "route_of_administration": None,
        },
    )


def _claim_patient(record: ClaimEvent) -> Optional[EntityCandidate]:
    if not (record.first_name and record.last_name):
        return None
    return EntityCandidate(
        EntityKind.PATIENT,
        {
            "mrn": record.medical_record_number,
            "patient_id_external": record.patient_id_external,
            "first_name": record.first_name,
            "middle_name": None,
            "last_name": record.last_name,
            "suffix": None,
            "date_of_birth": record.date_of_birth,
            "gender": record.gender,
        },
    )


# ============================================================================
# Slot declarations
# ============================================================================

PRESCRIPTION_REFERENCE_SLOTS: tuple[ReferenceSlot, ...] = (
    ReferenceSlot("covered_entity_id", EntityKind.ORGANIZATION, _prescription_organization),
    ReferenceSlot("pharmacy_id", EntityKind.PHARMACY, _prescription_pharmacy),
    ReferenceSlot("prescriber_id", EntityKind.PRESCRIBER, _prescription_prescriber),
    ReferenceSlot("location_id", EntityKind.LOCATION, _prescription_location),
    ReferenceSlot("drug_id", EntityKind.DRUG, _prescription_drug),
    ReferenceSlot("patient_id", EntityKind.PATIENT, _prescription_patient),
    ReferenceSlot("primary_insurance_id", EntityKind.INSURANCE_PLAN, _prescription_primary_plan),
    ReferenceSlot("secondary_insurance_id", EntityKind.INSURANCE_PLAN, _prescription_secondary_plan),
)

CLAIM_REFERENCE_SLOTS: tuple[ReferenceSlot, ...] = (
    ReferenceSlot("covered_entity_id", EntityKind.ORGANIZATION, _claim_organization),
    ReferenceSlot("pharmacy_id", EntityKind.PHARMACY, _claim_pharmacy),
    ReferenceSlot("prescriber_id", EntityKind.PRESCRIBER, _claim_prescriber),
    ReferenceSlot("drug_id", EntityKind.DRUG, _claim_drug),
    ReferenceSlot("patient_id", EntityKind.PATIENT, _claim_patient),
)


def reference_slots(record: TypedRecord) -> tuple[ReferenceSlot, ...]:
    """Slots that apply to the record's type."""
    if isinstance(record, PrescriptionEvent):
        return PRESCRIPTION_REFERENCE_SLOTS
    if isinstance(record, ClaimEvent):
        return CLAIM_REFERENCE_SLOTS
    raise TypeError(f"Unsupported record type: {type(record).__name__}")


def extract_candidates(records: list[TypedRecord], kind: EntityKind) -> list[EntityCandidate]:
    """Distinct candidates of one kind, first sighting per natural key wins.

    Candidates without any identifying attribute are dropped; the facts that
    reference them load with a null id.
    """
    seen: dict[str, EntityCandidate] = {}
    for record in records:
        for slot in reference_slots(record):
            if slot.kind is not kind:
                continue
            candidate = slot.extract(record)
            if candidate is None:
                continue
            key = candidate.key
            if key is not None and key not in seen:
                seen[key] = candidate
    return list(seen.values())
