#!/usr/bin/env python3
"""Export the ledger to a CSV file."""

from __future__ import annotations

import argparse
import sys
from datetime import date
from pathlib import Path
from typing import Optional

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from finzn import config
from finzn.app import build_app
from finzn.csv_interchange import ExportKind


def main(kind: str = 'complete', output: Optional[str] = None,
         db_path: Optional[str] = None, user_id: Optional[str] = None) -> Path:
    config.configure_logging()
    app = build_app(db_path=db_path, user_id=user_id)
    text = app.csv.export_data_to_csv(kind)

    if output is None:
        config.ensure_data_directories()
        target = config.EXPORTS_DIR / f"finzn-{kind}-{date.today().isoformat()}.csv"
    else:
        target = Path(output)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text + "\n", encoding='utf-8')

    rows = max(len(text.splitlines()) - 1, 0)
    print(f"Exported {rows} rows ({kind}) to {target}")
    return target


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Export FINZN records to CSV.')
    parser.add_argument('--kind', choices=[k.value for k in ExportKind], default='complete',
                        help='Which layout to export')
    parser.add_argument('--output', help='Output file (defaults to the exports directory)')
    parser.add_argument('--db', dest='db_path', help='SQLite database path')
    parser.add_argument('--user', dest='user_id', help='Owner of the records')
    args = parser.parse_args()
    main(kind=args.kind, output=args.output, db_path=args.db_path, user_id=args.user_id)
