"""CLI command implementations for assetdelta.

- manifest: fetch, diff and list manifest snapshots
- download: fetch the delta listed in a diff record
- extract, reconcile, segments, decode, flatten: per-stage processing
- run: every stage in sequence
"""

from assetdelta.commands.download import download
from assetdelta.commands.manifest import manifest_group
from assetdelta.commands.process import decode, extract, flatten, reconcile, segments
from assetdelta.commands.run import run

__all__ = ["decode", "download", "extract", "flatten", "manifest_group", "reconcile", "run", "segments"]
