"""Infrastructure layer for files app.

This package contains integrations with external systems:
- Storage backends (local filesystem, S3-compatible object storage)
- The user-scoped physical store on top of them
- Name, path and type helpers

Keep infrastructure concerns separate from business logic.
"""
