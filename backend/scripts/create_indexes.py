"""Create the weighted text and secondary indexes used by search.

Usage:
    python scripts/create_indexes.py [--collection NAME ...] [--json]

Exits 0 when the store answered (conflicting indexes are reported, never
dropped) and 2 when the store cannot be reached.
"""

from __future__ import annotations

import asyncio
import sys

from academyhub.domain.search.maintenance import provision_main
from academyhub.obs import logging as obs_logging


if __name__ == "__main__":
	obs_logging.configure_logging()
	sys.exit(asyncio.run(provision_main()))
