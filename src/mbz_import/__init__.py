"""
mbz_import: MusicBrainz bulk importer

Loads pre-extracted MusicBrainz records into a transactional store as a
linked entity graph:

    source records → entity fragments → batch files → committed batches

Core constraints:
- One-shot bulk import of record files (no live source)
- Types load strictly in dependency order
- Every batch carries a unique batch-id, so reruns are safe
"""

__version__ = "0.1.0"
