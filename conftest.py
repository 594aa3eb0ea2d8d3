"""
Root conftest.py: adds fetcher/ to sys.path so tests can import its modules
as bare names (e.g. `from frontier import Frontier`) matching how the
fetcher itself runs.
"""

import sys
import os

# Insert the fetcher directory so modules like db, frontier, etc. are importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "fetcher"))
