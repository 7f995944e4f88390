import argparse
import sys
from pathlib import Path

import pandas as pd

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db
from services import stores as store_service
from services import trucks as truck_service
from services.repository import SqliteRepository


def _text(value):
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def import_trucks(repository, excel_file, sheet_name="Camiones"):
    df = pd.read_excel(excel_file, sheet_name=sheet_name, dtype=str)
    created = 0
    skipped = []
    for _, row in df.iterrows():
        form = {
            "number": _text(row.get("Numero")),
            "name": _text(row.get("Nombre")),
            "phone": _text(row.get("Telefono")),
        }
        if not form["number"]:
            continue
        result = truck_service.create_truck(repository, form)
        if result["errors"]:
            skipped.append((form["number"], result["errors"]))
            continue
        created += 1
    return created, skipped


def import_stores(repository, excel_file, sheet_name="Tiendas"):
    df = pd.read_excel(excel_file, sheet_name=sheet_name, dtype=str)
    created = 0
    skipped = []
    for _, row in df.iterrows():
        form = {"code": _text(row.get("Codigo")), "name": _text(row.get("Nombre"))}
        if not form["code"]:
            continue
        result = store_service.create_store(repository, form)
        if result["errors"]:
            skipped.append((form["code"], result["errors"]))
            continue
        created += 1
    return created, skipped


def main():
    parser = argparse.ArgumentParser(description="Import trucks and stores from an Excel workbook.")
    parser.add_argument("--file", required=True, help="Workbook with Camiones and Tiendas sheets")
    args = parser.parse_args()
    excel_file = Path(args.file)
    if not excel_file.exists():
        raise SystemExit(f"File not found: {excel_file}")
    db.init_db()
    repository = SqliteRepository()
    for label, importer in (("trucks", import_trucks), ("stores", import_stores)):
        created, skipped = importer(repository, excel_file)
        print(f"{label}: {created} created, {len(skipped)} skipped")
        for key, errors in skipped:
            print(f"  {key}: {'; '.join(errors.values())}")


if __name__ == "__main__":
    main()
