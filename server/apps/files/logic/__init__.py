"""Business logic layer for files app.

This package contains all business logic for the item hierarchy:
- The metadata index (tree invariants, queries)
- Upload, download, rename, move and delete across index and storage
- Quota checks and usage reports

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).
"""
