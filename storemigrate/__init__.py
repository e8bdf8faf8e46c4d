"""
Storage Migration Application

A toolkit for migrating and synchronizing storage accounts: blob
containers, blobs, queues, document database containers and documents.

Supports:
- Snapshot comparison with per property differences
- Create, update and delete plans that converge the destination
- Batched, retried transfers with per item statistics
- Paged copying of large blob and document collections
- Dry runs, skip existing and overwrite policies
"""

__version__ = "0.1.0"
