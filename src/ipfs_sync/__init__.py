"""
ipfs-sync -- keep local directories mirrored into IPFS.

Each configured directory is copied into the node's mutable file
system, published under its own IPNS key, and kept pinned as files
change on disk.
"""

import os

__version__ = "0.3.0"
__author__ = "The ipfs-sync Contributors"

SYNC_HOME = os.environ.get("IPFS_SYNC_HOME", "~/.ipfs-sync")

COPYRIGHT = (
    "Copyright © 2020, The ipfs-sync Contributors. All rights reserved.\n"
    "BSD 3-Clause “New” or “Revised” License."
)
