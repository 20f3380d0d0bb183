"""Integration tests for DuckDBAdapter against an in-memory database.

Tests cover:
- Schema creation (idempotent)
- bulk_read with and without filters
- bulk_insert returning stored rows, and conflicts as StorageConflictError
- bulk_upsert counting inserted rows of partially conflicting chunks
- Import log recording
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from rx_loader.adapters.storage.duckdb_adapter import DuckDBAdapter
from rx_loader.domain.ports import StorageError, UpsertOutcome
from rx_loader.infrastructure.config_manager import DatabaseConfig


class TestDuckDBAdapterSetup:
    """Test adapter construction and schema setup."""

    def test_default_is_in_memory(self):
        adapter = DuckDBAdapter()
        assert adapter.db_path == ":memory:"
        adapter.close()

    def test_from_config(self, tmp_path):
        config = DatabaseConfig(db_type="duckdb", db_path=str(tmp_path / "rx.duckdb"))
        adapter = DuckDBAdapter(db_config=config)
        assert adapter.initialize_schema().is_success()
        adapter.close()
        assert (tmp_path / "rx.duckdb").exists()

    def test_rejects_postgresql_config(self):
        config = DatabaseConfig(db_type="postgresql", host="localhost", database="rx")
        with pytest.raises(StorageError):
            DuckDBAdapter(db_config=config)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(StorageError):
            DuckDBAdapter(db_path=str(tmp_path / "nope" / "rx.duckdb"))

    def test_schema_is_idempotent(self, duckdb_storage):
        """Running initialize_schema twice is harmless."""
        assert duckdb_storage.initialize_schema().is_success()


class TestBulkInsertAndRead:
    """Test reference-table reads and inserts."""

    def test_insert_returns_rows_with_ids(self, duckdb_storage):
        result = duckdb_storage.bulk_insert("pharmacies", [
            {"pharmacy_name": "Main St", "npi_number": 1234567890},
            {"pharmacy_name": "Corner", "nabp_number": 312345},
        ])
        assert result.is_success()
        rows = {row["pharmacy_name"]: row for row in result.value}
        assert rows["Main St"]["npi_number"] == 1234567890
        assert rows["Corner"]["nabp_number"] == 312345
        assert all(isinstance(row["id"], str) for row in result.value)

    def test_read_all_and_filtered(self, duckdb_storage):
        duckdb_storage.bulk_insert("drugs", [{"ndc_code": "00002322730"}, {"ndc_code": "00093015001"}])

        everything = duckdb_storage.bulk_read("drugs", ["ndc_code"])
        assert sorted(row["ndc_code"] for row in everything.value) == ["00002322730", "00093015001"]
        assert set(everything.value[0]) == {"id", "ndc_code"}

        filtered = duckdb_storage.bulk_read("drugs", ["ndc_code"], filters={"ndc_code": ["00093015001"]})
        assert [row["ndc_code"] for row in filtered.value] == ["00093015001"]

        assert duckdb_storage.bulk_read("drugs", ["ndc_code"], filters={"ndc_code": []}).value == []

    def test_conflict_is_reported_and_rolled_back(self, duckdb_storage):
        """A duplicate unique key fails the whole call and stores nothing from it."""
        duckdb_storage.bulk_insert("pharmacies", [{"pharmacy_name": "A", "npi_number": 1111111111}])
        result = duckdb_storage.bulk_insert("pharmacies", [
            {"pharmacy_name": "B", "npi_number": 2222222222},
            {"pharmacy_name": "A again", "npi_number": 1111111111},
        ])
        assert result.is_failure()
        assert result.error_type == "StorageConflictError"
        stored = duckdb_storage.bulk_read("pharmacies", ["npi_number"]).value
        assert [row["npi_number"] for row in stored] == [1111111111]

    def test_unknown_table_and_column(self, duckdb_storage):
        assert duckdb_storage.bulk_read("nope", ["id"]).is_failure()
        result = duckdb_storage.bulk_insert("drugs", [{"ndc_code": "1", "color": "blue"}])
        assert result.is_failure()
        assert result.error_type == "StorageError"

    def test_empty_insert(self, duckdb_storage):
        assert duckdb_storage.bulk_insert("drugs", []).value == []


class TestBulkUpsert:
    """Test fact-table upserts."""

    @staticmethod
    def prescription(identifier):
        return {"prescription_identifier": identifier, "prescribed_date": date(2024, 3, 1)}

    @staticmethod
    def claim(number, refill=0):
        return {
            "prescription_number": number,
            "date_rx_written": date(2024, 1, 5),
            "refill_number": refill,
            "fill_date": date(2024, 1, 6),
        }

    def test_partial_chunk_with_conflict_key(self, duckdb_storage):
        """Existing keys are skipped; the rest of the chunk is inserted."""
        duckdb_storage.bulk_upsert("prescriptions", [self.prescription("RX-2")], ["prescription_identifier"])
        result = duckdb_storage.bulk_upsert(
            "prescriptions",
            [self.prescription(f"RX-{i}") for i in range(1, 5)],
            conflict_key=["prescription_identifier"],
        )
        assert result.is_success()
        assert result.value == UpsertOutcome(submitted_count=4, inserted_count=3)
        assert result.value.conflict_count == 1
        assert len(duckdb_storage.bulk_read("prescriptions", ["prescription_identifier"]).value) == 4

    def test_append_relies_on_table_constraint(self, duckdb_storage):
        """Without a conflict key the claims unique constraint decides."""
        duckdb_storage.bulk_upsert("claims", [self.claim("7000001")])
        result = duckdb_storage.bulk_upsert("claims", [self.claim("7000001"), self.claim("7000001", refill=1)])
        assert result.value.inserted_count == 1

    def test_sub_cent_amounts_kept(self, duckdb_storage):
        """Currency columns keep four decimal places."""
        claim = {**self.claim("7000001"), "drug_cost_340b": Decimal("0.1275"), "patient_pay": Decimal("-12.5")}
        duckdb_storage.bulk_upsert("claims", [claim])
        [row] = duckdb_storage.bulk_read("claims", ["drug_cost_340b", "patient_pay"]).value
        assert row["drug_cost_340b"] == Decimal("0.1275")
        assert row["patient_pay"] == Decimal("-12.5")

    def test_empty_upsert(self, duckdb_storage):
        assert duckdb_storage.bulk_upsert("claims", []).value == UpsertOutcome(0, 0)


class TestImportLog:
    """Test import log recording."""

    def test_record_import_log(self, duckdb_storage):
        result = duckdb_storage.record_import_log({
            "file_name": "scripts.csv",
            "file_type": "prescriptions",
            "status": "Success",
            "total_records": 10,
            "records_imported": 10,
            "pharmacies_created": 2,
            "started_at": datetime(2024, 3, 1, 8, 0),
        })
        assert result.is_success()
        [row] = duckdb_storage.bulk_read("import_logs", ["status", "pharmacies_created"]).value
        assert row["id"] == result.value
        assert row["status"] == "Success"
        assert row["pharmacies_created"] == 2
