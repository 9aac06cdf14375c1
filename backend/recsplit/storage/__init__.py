# Storage package init
"""
RecSplit Backend — Blob Storage
=================================

    - base.py:     BlobStore interface (download / upload / delete)
    - local.py:    LocalBlobStore, files under a root directory
    - factory.py:  BlobStoreFactory, resolves a user's BlobStore
"""
