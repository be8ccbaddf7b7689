"""
Record management backend.

This package keeps record documents, their uniqueness guarantees and the
images they reference in external object storage consistent across create,
update and delete, behind a FastAPI application.
"""
