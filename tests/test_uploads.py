import io

import pytest
from openpyxl import Workbook

import models
import uploads
from conftest import make_ward
from errors import ValidationFailed

HEADER = ["S.No", "Property ID", "Ward No", "Corporate Name", "Ward Name", "Mohalla",
          "Type", "Category", "Owner", "House No", "Address", "Popular Name"]


def xlsx_bytes(rows):
    wb = Workbook()
    ws = wb.active
    ws.append(HEADER)
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_read_rows_xlsx():
    content = xlsx_bytes([
        [1, "PID200", 4, "Zone A", "Ward 1", "Civil Lines", "Residential", "A", "Ramesh Gupta", 12.0, "1 Mall Road", None],
        [None] * 12,
    ])
    rows = uploads.read_rows("register.xlsx", uploads.XLSX_CONTENT_TYPE, content)
    assert len(rows) == 1
    data = uploads.parse_row(rows[0])
    assert data["property_id"] == "PID200"
    assert data["corporate_ward_no"] == "4"
    assert data["house_no"] == "12"
    assert data["popular_name"] == ""


def test_read_rows_csv_with_bom_and_short_rows():
    content = "\ufeffsno,property_id\n1,PID300,7,Zone A\n".encode("utf-8")
    rows = uploads.read_rows("register.csv", "text/csv", content)
    data = uploads.parse_row(rows[0])
    assert data["property_id"] == "PID300"
    assert data["corporate_name"] == "Zone A"
    assert data["address"] == ""


def test_read_rows_rejects_other_types():
    with pytest.raises(ValidationFailed, match="Only CSV and Excel"):
        uploads.read_rows("photo.png", "image/png", b"\x89PNG")


@pytest.mark.parametrize("success,failed,duplicate,expected", [
    (3, 0, 0, "Success"),
    (2, 1, 0, "Partial"),
    (2, 0, 1, "Partial"),
    (0, 2, 1, "Failed"),
])
def test_upload_status(success, failed, duplicate, expected):
    assert uploads.upload_status(success, failed, duplicate) == expected


def test_import_creates_wards_and_records_history(db):
    rows = [
        ["1", "PID1", "3", "Zone D", "Ward 7", "Sadar", "", "", "Owner One", "", "Address 1"],
        ["2", "PID2", "3", "Zone D", "Ward 7", "Chowk", "", "", "Owner Two", "", "Address 2"],
        ["3", "PID3", "3", "", "Ward 7", "Chowk", "", "", "Owner Three", "", "Address 3"],
    ]
    record, errors = uploads.import_properties(db, rows, "zone-d.csv", "Admin User")

    assert (record.total, record.success, record.failed, record.duplicate) == (3, 2, 1, 0)
    assert record.status == "Partial"
    assert errors == ["Row 4: Missing corporate name or ward name"]
    assert record.errors == errors

    ward = db.query(models.Ward).filter_by(corporate_name="Zone D").one()
    assert ward.mohallas == ["Sadar", "Chowk"]
    assert {p.property_id for p in ward.properties} == {"PID1", "PID2"}


def test_import_all_duplicates_is_failed(db):
    ward = make_ward(db)
    db.add(models.Property(property_id="PID1", ward_id=ward.id, mohalla="Civil Lines",
                           owner_name="Existing", address="Somewhere"))
    db.commit()

    rows = [["1", "PID1", "1", "Zone A", "Ward 1", "Civil Lines", "", "", "Someone", "", "Elsewhere"]]
    record, errors = uploads.import_properties(db, rows, "again.csv", "Admin User")
    assert record.status == "Failed"
    assert record.duplicate == 1
    assert errors == ["Row 2: Property ID PID1 already exists"]
    assert db.query(models.Property).count() == 1


def test_read_rows_non_utf8_csv():
    with pytest.raises(ValidationFailed, match="UTF-8"):
        uploads.read_rows("props.csv", "text/csv", "sno,id\n1,Gauß\n".encode("latin-1") + b"\xff\xfe")


@pytest.mark.parametrize("content", [b"not a zip", b""])
def test_read_rows_corrupt_xlsx(content):
    with pytest.raises(ValidationFailed, match="empty or invalid"):
        uploads.read_rows("props.xlsx", uploads.XLSX_CONTENT_TYPE, content)
