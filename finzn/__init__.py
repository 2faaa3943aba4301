"""Top-level package for the FINZN personal-finance core.

The primary modules are:

* ``ledger`` – in-memory collections and the mutation operations
* ``aggregator`` – balance, category totals and spending-limit alerts
* ``csv_interchange`` – CSV export and format-detecting import
* ``app`` – the composition root that wires the pieces together

To run the Streamlit page from the command line you can execute:

```bash
streamlit run finzn/Home.py
```
"""

from .aggregator import LedgerAggregator
from .app import FinznApp, build_app
from .csv_interchange import CSVFormat, CSVInterchange, ExportKind
from .ledger import Ledger

__all__ = [
    "CSVFormat",
    "CSVInterchange",
    "ExportKind",
    "FinznApp",
    "Ledger",
    "LedgerAggregator",
    "build_app",
]
