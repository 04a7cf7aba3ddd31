"""Repositories over memory, SQL and MongoDB, pagination, a local file system layer and validation rules."""

__version__ = "0.1.0"