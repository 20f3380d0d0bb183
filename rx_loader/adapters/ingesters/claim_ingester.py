"""Pharmacy claims report ingester.

Reads the claims report export (one row per adjudicated fill). Dates are US
``MM/DD/YYYY`` text and money columns carry ``$``, thousands separators and
accounting-style parentheses for negatives.
"""

from rx_loader.adapters.ingesters.tabular_ingester import ColumnSpec, TabularIngester
from rx_loader.domain.normalizers import (
    normalize_currency,
    normalize_date,
    normalize_decimal,
    normalize_identifier,
    normalize_integer,
    normalize_ndc,
    normalize_text,
)
from rx_loader.domain.records import ClaimEvent, RecordType

IDENTIFYING_HEADER = "Prescription #"

CLAIM_COLUMNS: tuple[ColumnSpec, ...] = (
    ColumnSpec("prescription_number", "Prescription #", normalize_text, required=True),
    ColumnSpec("date_rx_written", "Date Rx Written", normalize_date, required=True),
    ColumnSpec("fill_date", "Fill Date", normalize_date, required=True),
    ColumnSpec("refill_number", "Refill #", normalize_integer, required=True),

    ColumnSpec("covered_entity_name", "Covered Entity", normalize_text),
    ColumnSpec("opaid", "OPAID", normalize_identifier),
    ColumnSpec("chain_pharmacy", "Chain Pharmacy", normalize_text),
    ColumnSpec("pharmacy_name", "Pharmacy", normalize_text),
    ColumnSpec("pharmacy_nabp_npi", "Pharmacy NABP or NPI", normalize_integer),
    ColumnSpec("transaction_code", "Transaction Code", normalize_text),
    ColumnSpec("claim_date", "Claim Date", normalize_date),
    ColumnSpec("claim_id", "Claim ID", normalize_integer),
    ColumnSpec("claim_captured_date", "Claim Captured Date", normalize_date),

    ColumnSpec("bin", "BIN", normalize_identifier),
    ColumnSpec("pcn", "PCN", normalize_identifier),
    ColumnSpec("plan_group", "Group", normalize_text),
    ColumnSpec("secondary_bin", "Secondary BIN", normalize_identifier),
    ColumnSpec("secondary_pcn", "Secondary PCN", normalize_identifier),
    ColumnSpec("secondary_group", "Secondary Group", normalize_text),
    ColumnSpec("other_coverage_code", "Other Coverage Code", normalize_text),
    ColumnSpec("submission_clarification_code", "Submission Clarification Code", normalize_text),

    ColumnSpec("patient_id_external", "Patient ID", normalize_text),
    ColumnSpec("gender", "Gender", normalize_text),
    ColumnSpec("first_name", "First Name", normalize_text),
    ColumnSpec("last_name", "Last Name", normalize_text),
    ColumnSpec("date_of_birth", "DOB", normalize_date),
    ColumnSpec("medical_record_number", "Medical Record #", normalize_text),

    ColumnSpec("prescriber_name", "Prescriber Name", normalize_text),
    ColumnSpec("prescriber_npi_dea", "Prescriber NPI/DEA", normalize_text),

    ColumnSpec("ndc", "NDC", normalize_ndc),
    ColumnSpec("drug_name", "Drug Name", normalize_text),
    ColumnSpec("package_size", "Package Size", normalize_decimal),
    ColumnSpec("manufacturer_name", "Mfg. Name", normalize_text),
    ColumnSpec("drug_indicator", "Drug Indicator", normalize_text),
    ColumnSpec("qty_dispensed", "Qty Dispensed", normalize_decimal),
    ColumnSpec("days_supply", "Days supply", normalize_integer),

    ColumnSpec("claim_type", "Claim Type", normalize_text),
    ColumnSpec("claim_sub_type", "Claim Sub Type", normalize_text),
    ColumnSpec("reason", "Reason", normalize_text),
    ColumnSpec("sub_reason", "Sub Reason", normalize_text),

    ColumnSpec("patient_pay", "Patient Pay", normalize_currency),
    ColumnSpec("third_party_payment", "Third Party Payment", normalize_currency),
    ColumnSpec("total_payment", "Total Payment", normalize_currency),
    ColumnSpec("dispensing_fee", "Disp. Fee", normalize_currency),
    ColumnSpec("ce_receivable", "CE Receivable", normalize_currency),
    ColumnSpec("drug_cost_340b", "340B Drug Cost", normalize_currency),
    ColumnSpec("total_claim_cost", "Total Claim Cost", normalize_currency),
    ColumnSpec("profit_or_loss", "Profit OR Loss", normalize_currency),
    ColumnSpec("retail_drug_cost", "Retail Drug Cost", normalize_currency),

    ColumnSpec("comments", "Comments", normalize_text),
    ColumnSpec("replenishment_status", "Replenishment Status", normalize_text),
    ColumnSpec("billing_model", "Billing Model", normalize_text),
    ColumnSpec("trued_up_units", "Trued Up Units", normalize_decimal),
    ColumnSpec("trued_up_cost", "Trued Up Cost", normalize_currency),
    ColumnSpec("trued_up_date", "Trued Up Date", normalize_date),
)


class ClaimIngester(TabularIngester):
    """Parses claims reports into ClaimEvent records."""

    record_type = RecordType.CLAIMS
    record_model = ClaimEvent
    column_specs = CLAIM_COLUMNS

    @classmethod
    def matches_headers(cls, headers: list[str]) -> bool:
        return IDENTIFYING_HEADER in headers
