"""Unit tests for ingester selection."""

import pytest

from rx_loader.adapters.ingesters import ClaimIngester, PrescriptionIngester, detect_record_type, get_ingester
from rx_loader.domain.ports import SourceNotFoundError, UnsupportedSourceError
from rx_loader.domain.records import RecordType


class TestDetectRecordType:
    """Test header-based record type detection."""

    def test_prescriptions(self, write_csv):
        source = write_csv("scripts.csv", [{"PrescriptionIdentifier": "RX-1", "PrescribedDate": "03/01/2024"}])
        assert detect_record_type(source) is RecordType.PRESCRIPTIONS

    def test_claims(self, write_csv):
        source = write_csv("report.csv", [{"Prescription #": "1", "Fill Date": "01/06/2024"}])
        assert detect_record_type(source) is RecordType.CLAIMS

    def test_unrecognized_headers(self, write_csv):
        source = write_csv("other.csv", [{"a": 1, "b": 2}])
        with pytest.raises(UnsupportedSourceError):
            detect_record_type(source)

    def test_corrupt_workbook(self, tmp_path):
        path = tmp_path / "report.xlsx"
        path.write_bytes(b"not a zip")
        with pytest.raises(UnsupportedSourceError):
            detect_record_type(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceNotFoundError):
            detect_record_type(str(tmp_path / "nope.csv"))


class TestGetIngester:
    """Test the ingester factory."""

    def test_inferred_from_headers(self, write_csv):
        source = write_csv("report.csv", [{"Prescription #": "1"}])
        assert isinstance(get_ingester(source), ClaimIngester)

    def test_explicit_type_skips_detection(self, tmp_path):
        """An explicit record type doesn't need the file to exist yet."""
        ingester = get_ingester(str(tmp_path / "scripts.xlsx"), record_type="prescriptions", progress_interval=300)
        assert isinstance(ingester, PrescriptionIngester)
        assert ingester.progress_interval == 300

    def test_unknown_record_type(self, tmp_path):
        with pytest.raises(UnsupportedSourceError):
            get_ingester(str(tmp_path / "scripts.csv"), record_type="invoices")

    @pytest.mark.parametrize("name", ["data.json", "data.xml", "legacy.xls"])
    def test_unsupported_extension(self, name):
        with pytest.raises(UnsupportedSourceError):
            get_ingester(name, record_type=RecordType.CLAIMS)
