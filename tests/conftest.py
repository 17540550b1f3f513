"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages.
Modules are not purged and re-imported: SQLModel table classes register
into a shared metadata object and cannot be defined twice.
"""

import sys
from pathlib import Path

# Insert local src directory at the beginning of sys.path
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))
