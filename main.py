from __future__ import annotations

import sys
from collections.abc import Sequence
from pathlib import Path

# Make sure the 'src' directory is on sys.path so 'bcistream' can be imported
REPO_ROOT = Path(__file__).resolve().parent
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from bcistream.cli import main as run_demo_main


def main(argv: Sequence[str] | None = None) -> None:
    """Run the online prediction demo; see ``python main.py --help``."""
    run_demo_main(list(argv) if argv is not None else sys.argv[1:])


if __name__ == "__main__":
    main()
