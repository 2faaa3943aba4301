#!/usr/bin/env python3
"""Import a CSV file (FINZN export or bank statement) into the ledger."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from finzn import config
from finzn.app import build_app
from finzn.errors import CSVImportError
from finzn.models import ImportResult


def main(path: str, hinted_type: str = 'auto',
         db_path: Optional[str] = None, user_id: Optional[str] = None) -> Optional[ImportResult]:
    config.configure_logging()
    app = build_app(db_path=db_path, user_id=user_id)
    text = Path(path).read_text(encoding='utf-8-sig')

    try:
        result = app.csv.import_data_from_csv(text, hinted_type)
    except CSVImportError as exc:
        print(f"❌ {exc}")
        return None

    print(f"Detected format: {result.detected_format}")
    print(f"Imported: {result.imported}")
    print(f"Errors: {result.errors}")
    if result.skipped:
        print(f"Skipped (zero amount): {result.skipped}")
    return result


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Import a CSV file into FINZN.')
    parser.add_argument('path', help='CSV file to import')
    parser.add_argument('--type', dest='hinted_type', choices=['auto', 'expenses', 'incomes'], default='auto',
                        help='Layout to assume when the header is not recognized')
    parser.add_argument('--db', dest='db_path', help='SQLite database path')
    parser.add_argument('--user', dest='user_id', help='Owner of the records')
    args = parser.parse_args()
    result = main(args.path, hinted_type=args.hinted_type, db_path=args.db_path, user_id=args.user_id)
    sys.exit(0 if result is not None else 1)
