# Root conftest: make the top-level packages importable without installation
import pathlib
import sys

ROOT = str(pathlib.Path(__file__).parent.resolve())
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
