"""Streamlit page for the FINZN ledger.

Shows the month's balance, category totals and spending-limit alerts, and
exposes CSV import/export.  All state lives in the objects returned by
:func:`finzn.app.build_app`; the page only renders them.

Run with::

    streamlit run finzn/Home.py
"""

from __future__ import annotations

import sys
from datetime import date
from pathlib import Path
from typing import Optional

import pandas as pd
import streamlit as st

# Add project root to path for imports
project_root = Path(__file__).parent.parent.resolve()
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from finzn.app import FinznApp, build_app  # noqa: E402
from finzn.config import configure_logging  # noqa: E402
from finzn.csv_interchange import ExportKind  # noqa: E402
from finzn.errors import CSVImportError  # noqa: E402
from finzn.formatting import format_currency  # noqa: E402
from finzn.models import AlertLevel, ImportResult  # noqa: E402
from finzn.parsing import current_month  # noqa: E402

APP_STATE_KEY = 'finzn_app'
LAST_IMPORT_KEY = 'finzn_last_import'
HINT_OPTIONS = {"Automático": "auto", "Gastos": "expenses", "Ingresos": "incomes"}


def _get_app() -> FinznApp:
    """Build the application once per session."""
    if APP_STATE_KEY not in st.session_state:
        st.session_state[APP_STATE_KEY] = build_app()
    return st.session_state[APP_STATE_KEY]


def _current_month(today: Optional[date] = None) -> str:
    return current_month(today)


def _handle_upload(app: FinznApp, uploaded_file, hinted_type: str = "auto") -> Optional[ImportResult]:
    """Import an uploaded CSV and report the outcome on the page.

    Streamlit reruns the script on every interaction, so a file that was
    already imported in this session is ignored.
    """
    if uploaded_file is None:
        return None
    signature = f"{getattr(uploaded_file, 'name', '')}:{getattr(uploaded_file, 'size', '')}"
    if st.session_state.get(LAST_IMPORT_KEY) == signature:
        return None
    st.session_state[LAST_IMPORT_KEY] = signature

    raw = uploaded_file.read()
    text = raw.decode("utf-8-sig", errors="replace") if isinstance(raw, bytes) else str(raw)
    try:
        result = app.csv.import_data_from_csv(text, hinted_type)
    except CSVImportError as exc:
        st.error(str(exc))
        return None

    message = f"Importados: {result.imported} registros"
    if result.errors:
        st.warning(f"{message} ({result.errors} filas con errores)")
    else:
        st.success(message)
    return result


def _category_frame(app: FinznApp, month: str) -> pd.DataFrame:
    totals = app.aggregator.get_expenses_by_category(month)
    frame = pd.DataFrame(
        [{'Categoría': category, 'Total': amount} for category, amount in totals.items()],
        columns=['Categoría', 'Total'],
    )
    return frame.sort_values('Total', ascending=False).reset_index(drop=True)


def main() -> None:
    """Entry point for the Streamlit app."""
    configure_logging()
    st.set_page_config(page_title="FINZN", layout="wide")
    st.title("FINZN")

    app = _get_app()
    month = st.sidebar.text_input("Mes (YYYY-MM)", value=_current_month())

    balance = app.aggregator.calculate_balance(month)
    col1, col2, col3 = st.columns(3)
    col1.metric("Ingresos", format_currency(balance.total_income))
    col2.metric("Gastos", format_currency(balance.total_expenses))
    col3.metric("Disponible", format_currency(balance.available))

    for alert in app.aggregator.check_spending_limits(month):
        if alert.level is AlertLevel.DANGER:
            st.error(alert.message)
        else:
            st.warning(alert.message)

    st.subheader("Gastos por categoría")
    st.dataframe(_category_frame(app, month))

    st.subheader("Límites de gasto")
    st.dataframe(app.aggregator.spending_limit_table(month))

    st.sidebar.header("Importar / Exportar")
    hint_label = st.sidebar.selectbox("Tipo de archivo", options=list(HINT_OPTIONS))
    uploaded_file = st.sidebar.file_uploader("Importar CSV", type=["csv"], accept_multiple_files=False)
    _handle_upload(app, uploaded_file, HINT_OPTIONS[hint_label])

    kind = st.sidebar.selectbox("Exportar", options=[k.value for k in ExportKind])
    st.sidebar.download_button(
        "Descargar CSV",
        data=app.csv.export_data_to_csv(kind),
        file_name=f"finzn-{kind}-{month}.csv",
        mime="text/csv",
    )


if __name__ == "__main__":
    main()
