"""Fact construction.

Replaces the reference attributes of each typed record with the ids published
in the run's ResolutionContext. Pure: no store access, and every record yields
exactly one fact (an unresolved reference becomes ``None``).
"""

from typing import Union

from rx_loader.domain.records import ClaimEvent, ClaimRecord, PrescriptionEvent, PrescriptionRecord
from rx_loader.domain.references import CLAIM_REFERENCE_SLOTS, PRESCRIPTION_REFERENCE_SLOTS, ReferenceSlot, TypedRecord
from rx_loader.domain.resolution import ResolutionContext

FactRecord = Union[PrescriptionRecord, ClaimRecord]


def _resolve_slots(record: TypedRecord, slots: tuple[ReferenceSlot, ...], context: ResolutionContext) -> dict:
    return {slot.fact_field: context.lookup(slot.kind, slot.key_for(record)) for slot in slots}


def build_prescription_fact(record: PrescriptionEvent, context: ResolutionContext) -> PrescriptionRecord:
    """Build the prescriptions row for one prescription event."""
    return PrescriptionRecord(
        prescription_identifier=record.prescription_identifier,
        prescribed_date=record.prescribed_date,
        encounter_fin=record.encounter_fin,
        encounter_start=record.encounter_start,
        encounter_end=record.encounter_end,
        transmission_method=record.transmission_method,
        status=record.status,
        ndc_code=record.ndc_code,
        medication_name=record.medication_name,
        dispense_quantity=record.dispense_quantity,
        dispense_quantity_unit=record.dispense_quantity_unit,
        refills=record.refills,
        days_supply=record.days_supply,
        frequency=record.frequency,
        primary_subscriber_number=record.primary_subscriber_number,
        secondary_subscriber_number=record.secondary_subscriber_number,
        source_file=record.source_file,
        **_resolve_slots(record, PRESCRIPTION_REFERENCE_SLOTS, context),
    )


def build_claim_fact(record: ClaimEvent, context: ResolutionContext) -> ClaimRecord:
    """Build the claims row for one claim event.

    Claims keep their raw descriptive columns (names, BIN/PCN, amounts) next
    to the resolved ids.
    """
    columns = record.model_dump(exclude={"row_number"})
    columns.update(_resolve_slots(record, CLAIM_REFERENCE_SLOTS, context))
    return ClaimRecord(**columns)


def build_fact(record: TypedRecord, context: ResolutionContext) -> FactRecord:
    if isinstance(record, PrescriptionEvent):
        return build_prescription_fact(record, context)
    if isinstance(record, ClaimEvent):
        return build_claim_fact(record, context)
    raise TypeError(f"Unsupported record type: {type(record).__name__}")
