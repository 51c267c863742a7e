"""
Workflows package - Sample workflow implementations.
"""

from eventflow.workflows.content_review import (
    create_content_review_workflow,
    register_content_review_workflow,
)

__all__ = [
    "create_content_review_workflow",
    "register_content_review_workflow",
]
