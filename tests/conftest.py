import sys
from pathlib import Path

import matplotlib

# Charts are written to files only; never open a display in tests.
matplotlib.use("Agg")

# Import `swing_analyzer` from the checkout when the package is not installed.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
