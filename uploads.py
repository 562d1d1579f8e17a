"""Bulk property import from CSV / XLSX sheets.

Sheets follow the municipal property register layout. The first row is a
header; data columns are read by position:

    1  property id          6  property type
    2  corporate ward no    7  property category
    3  corporate name       8  owner name
    4  ward name            9  house number
    5  mohalla             10  address
                           11  popular name
"""
import csv
import io
import logging
import zipfile
from typing import List, Tuple

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.orm import Session

import models
from errors import ValidationFailed

logger = logging.getLogger(__name__)

CSV_CONTENT_TYPES = {"text/csv", "application/csv", "application/vnd.ms-excel"}
XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
MAX_UPLOAD_BYTES = 60 * 1024 * 1024

COLUMNS = {
    "property_id": 1,
    "corporate_ward_no": 2,
    "corporate_name": 3,
    "ward_name": 4,
    "mohalla": 5,
    "property_type": 6,
    "property_category": 7,
    "owner_name": 8,
    "house_no": 9,
    "address": 10,
    "popular_name": 11,
}


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def read_rows(filename: str, content_type: str, content: bytes) -> List[List[str]]:
    """Return the data rows of the sheet (header dropped), blank rows skipped."""
    name = (filename or "").lower()
    if name.endswith(".xlsx") or content_type == XLSX_CONTENT_TYPE:
        try:
            wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except (zipfile.BadZipFile, InvalidFileException, KeyError) as e:
            logger.info("Unreadable workbook %s: %s", filename, e)
            raise ValidationFailed("File is empty or invalid")
        ws = wb.active
        all_rows = [[_cell(v) for v in row] for row in ws.iter_rows(values_only=True)]
        wb.close()
    elif name.endswith(".csv") or content_type in CSV_CONTENT_TYPES:
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ValidationFailed("File must be UTF-8 encoded")
        all_rows = [[_cell(v) for v in row] for row in csv.reader(io.StringIO(text))]
    else:
        raise ValidationFailed("Only CSV and Excel files are allowed")

    data = [row for row in all_rows[1:] if any(row)]
    if not all_rows or not data:
        raise ValidationFailed("File is empty or invalid")
    return data


def parse_row(values: List[str]) -> dict:
    return {
        field: values[idx] if idx < len(values) else ""
        for field, idx in COLUMNS.items()
    }


def find_or_create_ward(db: Session, corporate_name: str, ward_name: str, mohalla: str) -> models.Ward:
    ward = db.query(models.Ward).filter(
        models.Ward.corporate_name == corporate_name,
        models.Ward.ward_name == ward_name,
    ).first()

    if not ward:
        ward = models.Ward(
            corporate_name=corporate_name,
            ward_name=ward_name,
            mohallas=[mohalla] if mohalla else [],
        )
        db.add(ward)
        db.flush()
    elif mohalla and mohalla not in (ward.mohallas or []):
        # JSON columns only notice reassignment
        ward.mohallas = list(ward.mohallas or []) + [mohalla]
    return ward


def upload_status(success: int, failed: int, duplicate: int) -> str:
    if failed == 0 and duplicate == 0:
        return "Success"
    if success == 0:
        return "Failed"
    return "Partial"


def import_properties(db: Session, rows: List[List[str]], filename: str, uploaded_by: str) -> Tuple[models.UploadHistory, List[str]]:
    total = success = failed = duplicate = 0
    errors = []
    seen = set()

    for i, values in enumerate(rows):
        line_no = i + 2 # header is row 1
        total += 1
        data = parse_row(values)

        if not data["property_id"] or not data["owner_name"] or not data["address"]:
            errors.append(f"Row {line_no}: Missing required fields")
            failed += 1
            continue

        if data["property_id"] in seen or db.query(models.Property).filter(
            models.Property.property_id == data["property_id"]
        ).first():
            errors.append(f"Row {line_no}: Property ID {data['property_id']} already exists")
            duplicate += 1
            continue

        if not data["corporate_name"] or not data["ward_name"]:
            errors.append(f"Row {line_no}: Missing corporate name or ward name")
            failed += 1
            continue

        ward = find_or_create_ward(db, data["corporate_name"], data["ward_name"], data["mohalla"])
        db.add(models.Property(
            property_id=data["property_id"],
            ward_id=ward.id,
            mohalla=data["mohalla"],
            owner_name=data["owner_name"],
            address=data["address"],
            house_no=data["house_no"] or None,
            property_type=data["property_type"] or None,
            delivery_status="Pending",
        ))
        seen.add(data["property_id"])
        success += 1

    record = models.UploadHistory(
        filename=filename,
        uploaded_by=uploaded_by,
        total=total,
        success=success,
        failed=failed,
        duplicate=duplicate,
        status=upload_status(success, failed, duplicate),
        errors=errors or None,
    )
    db.add(record)
    db.commit()
    db.refresh(record)

    logger.info(
        "Upload %s by %s: %d rows, %d imported, %d failed, %d duplicate",
        filename, uploaded_by, total, success, failed, duplicate,
    )
    return record, errors
