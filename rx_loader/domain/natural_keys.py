"""Natural-key functions for reference entities.

A natural key is a deterministic string that says "these two sightings are the
same real-world entity". Each entity kind declares its identifying attributes
in priority order; the key is built from the first attribute that has a value:

    Pharmacy: npi:1234567890 -> nabp:312345 -> name:main st pharmacy

The same declaration (``KEY_ATTRIBUTES``) drives three things:

    1. the key computed for a candidate extracted from a source row,
    2. the lookup indexes the resolver builds over persisted rows,
    3. the key recomputed from a row returned by the store after insert.

All three read the *table column names* of the entity, so a candidate and a
stored row are interchangeable inputs and can never be canonicalized
differently.
"""

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from rx_loader.domain.normalizers import (
    canonical_name,
    normalize_date,
    normalize_identifier,
    normalize_integer,
    normalize_ndc,
)
from rx_loader.domain.records import EntityKind

Attributes = Mapping[str, Any]


@dataclass(frozen=True)
class IdentifyingAttribute:
    """One identifying attribute of an entity kind.

    Attributes:
        name: Key prefix and index name (``npi``, ``name``, ...)
        extract: Canonical value of the attribute, or None when absent
    """

    name: str
    extract: Callable[[Attributes], Optional[str]]

    def value(self, attributes: Attributes) -> Optional[str]:
        return self.extract(attributes)


def _integer_text(column: str) -> Callable[[Attributes], Optional[str]]:
    def extract(attributes: Attributes) -> Optional[str]:
        number = normalize_integer(attributes.get(column))
        return str(number) if number is not None else None
    return extract


def _identifier(column: str) -> Callable[[Attributes], Optional[str]]:
    def extract(attributes: Attributes) -> Optional[str]:
        return normalize_identifier(attributes.get(column))
    return extract


def _name(column: str) -> Callable[[Attributes], Optional[str]]:
    def extract(attributes: Attributes) -> Optional[str]:
        return canonical_name(attributes.get(column))
    return extract


def _ndc(attributes: Attributes) -> Optional[str]:
    return normalize_ndc(attributes.get("ndc_code"))


def _prescriber_name(attributes: Attributes) -> Optional[str]:
    last = canonical_name(attributes.get("last_name"))
    if last is None:
        return None
    first = canonical_name(attributes.get("first_name")) or ""
    return f"{last}|{first}"


def _patient_name_dob(attributes: Attributes) -> Optional[str]:
    first = canonical_name(attributes.get("first_name"))
    last = canonical_name(attributes.get("last_name"))
    if first is None or last is None:
        return None
    dob = normalize_date(attributes.get("date_of_birth")) or ""
    return f"{first}|{last}|{dob}"


def _plan(attributes: Attributes) -> Optional[str]:
    company = canonical_name(attributes.get("insurance_company"))
    if company is None:
        return None
    bin_number = normalize_identifier(attributes.get("bin")) or ""
    pcn = normalize_identifier(attributes.get("pcn")) or ""
    return f"{company}|{bin_number}|{pcn}"


KEY_ATTRIBUTES: dict[EntityKind, tuple[IdentifyingAttribute, ...]] = {
    EntityKind.ORGANIZATION: (
        IdentifyingAttribute("opaid", _identifier("opaid")),
        IdentifyingAttribute("org", _identifier("organization_identifier")),
        IdentifyingAttribute("name", _name("entity_name")),
    ),
    EntityKind.PHARMACY: (
        IdentifyingAttribute("npi", _integer_text("npi_number")),
        IdentifyingAttribute("nabp", _integer_text("nabp_number")),
        IdentifyingAttribute("name", _name("pharmacy_name")),
    ),
    EntityKind.PRESCRIBER: (
        IdentifyingAttribute("npi", _integer_text("npi")),
        IdentifyingAttribute("dea", _identifier("dea_number")),
        IdentifyingAttribute("name", _prescriber_name),
    ),
    EntityKind.LOCATION: (
        IdentifyingAttribute("id", _identifier("location_identifier")),
        IdentifyingAttribute("name", _name("location_name")),
    ),
    EntityKind.DRUG: (
        IdentifyingAttribute("ndc", _ndc),
    ),
    EntityKind.PATIENT: (
        IdentifyingAttribute("mrn", _identifier("mrn")),
        IdentifyingAttribute("ext", _identifier("patient_id_external")),
        IdentifyingAttribute("name", _patient_name_dob),
    ),
    EntityKind.INSURANCE_PLAN: (
        IdentifyingAttribute("plan", _plan),
    ),
}


# Stored columns the identifying attributes read; the resolver fetches these.
KEY_COLUMNS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.ORGANIZATION: ("opaid", "organization_identifier", "entity_name"),
    EntityKind.PHARMACY: ("npi_number", "nabp_number", "pharmacy_name"),
    EntityKind.PRESCRIBER: ("npi", "dea_number", "last_name", "first_name"),
    EntityKind.LOCATION: ("location_identifier", "location_name"),
    EntityKind.DRUG: ("ndc_code",),
    EntityKind.PATIENT: ("mrn", "patient_id_external", "first_name", "last_name", "date_of_birth"),
    EntityKind.INSURANCE_PLAN: ("insurance_company", "bin", "pcn"),
}


def natural_key(kind: EntityKind, attributes: Attributes) -> Optional[str]:
    """Natural key of an entity, or None when no identifying attribute is present.

    Parameters:
        kind: Entity kind
        attributes: Column -> value mapping (a candidate or a stored row)

    Returns:
        ``"<attribute>:<canonical value>"`` for the highest-priority attribute
        that has a value.
    """
    for attribute in KEY_ATTRIBUTES[kind]:
        value = attribute.value(attributes)
        if value is not None:
            return f"{attribute.name}:{value}"
    return None


def key_rank(kind: EntityKind, attributes: Attributes) -> int:
    """Priority position of the attribute that produces the natural key.

    0 means the strongest identifier is present. Entities without any
    identifying attribute rank last.
    """
    for rank, attribute in enumerate(KEY_ATTRIBUTES[kind]):
        if attribute.value(attributes) is not None:
            return rank
    return len(KEY_ATTRIBUTES[kind])


# ============================================================================
# Per-kind conveniences
# ============================================================================

def organization_key(attributes: Attributes) -> Optional[str]:
    return natural_key(EntityKind.ORGANIZATION, attributes)


def pharmacy_key(attributes: Attributes) -> Optional[str]:
    return natural_key(EntityKind.PHARMACY, attributes)


def prescriber_key(attributes: Attributes) -> Optional[str]:
    return natural_key(EntityKind.PRESCRIBER, attributes)


def location_key(attributes: Attributes) -> Optional[str]:
    return natural_key(EntityKind.LOCATION, attributes)


def drug_key(attributes: Attributes) -> Optional[str]:
    return natural_key(EntityKind.DRUG, attributes)


def patient_key(attributes: Attributes) -> Optional[str]:
    return natural_key(EntityKind.PATIENT, attributes)


def insurance_plan_key(attributes: Attributes) -> Optional[str]:
    return natural_key(EntityKind.INSURANCE_PLAN, attributes)
