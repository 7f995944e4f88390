import argparse
import csv
import sys
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db

BACKUP_DIR = ROOT / "data" / "backup"

# Credentials never leave the database.
EXCLUDED_COLUMNS = {"app_users": {"password"}}


def _export_table(table_name, target_dir):
    columns = [
        column
        for column in db.TABLE_COLUMNS[table_name]
        if column not in EXCLUDED_COLUMNS.get(table_name, set())
    ]
    rows = db.list_rows(table_name)
    if not rows:
        return 0

    path = target_dir / f"{table_name}.csv"
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(columns)
        for row in rows:
            writer.writerow(["" if row.get(column) is None else row.get(column) for column in columns])
    return len(rows)


def export_backup(target_dir=None):
    if target_dir is None:
        target_dir = BACKUP_DIR / datetime.now().strftime("%Y%m%d_%H%M%S")
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    return {table: _export_table(table, target_dir) for table in db.TABLE_COLUMNS}


def main():
    parser = argparse.ArgumentParser(description="Export every table to CSV.")
    parser.add_argument(
        "--out",
        default=None,
        help="Target directory (default: data/backup/<timestamp>)",
    )
    args = parser.parse_args()
    if not db.DB_PATH.exists():
        raise SystemExit(f"Database not found at {db.DB_PATH}")
    for table, count in export_backup(args.out).items():
        print(f"{table}: {count} rows")


if __name__ == "__main__":
    main()
