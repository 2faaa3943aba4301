#!/usr/bin/env python3
"""Launch the FINZN Streamlit page.

Streamlit is started as a subprocess with ``finzn/Home.py`` as the script;
extra command-line arguments are passed through to ``streamlit run``.
"""

import subprocess
import sys
from pathlib import Path

project_root = Path(__file__).parent.resolve()
home_page = project_root / "finzn" / "Home.py"

if __name__ == "__main__":
    completed = subprocess.run(
        [sys.executable, "-m", "streamlit", "run", str(home_page), *sys.argv[1:]],
        cwd=str(project_root),
    )
    sys.exit(completed.returncode)
