"""Report which search strategy each collection can use.

Usage:
    python scripts/check_search_indexes.py [--repair] [--json]

``--repair`` creates missing weighted text indexes. Exits 2 when the store
cannot be reached, 0 otherwise.
"""

from __future__ import annotations

import asyncio
import sys

from academyhub.domain.search.maintenance import check_main
from academyhub.obs import logging as obs_logging


if __name__ == "__main__":
	obs_logging.configure_logging()
	sys.exit(asyncio.run(check_main()))
