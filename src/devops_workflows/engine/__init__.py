"""Workflow engine components.

- Settings loaded from .env
- Structured logging
- File-backed workflow and variable stores
- The interpreter that runs workflows
- A small CLI surface
"""
