"""
Centralized validation utilities for graph ID patterns.

This module provides a single source of truth for validation patterns used
throughout the codebase, preventing duplication and ensuring consistency.
"""

from __future__ import annotations

import re

# Canonical entity and connection IDs: 12 lowercase hex characters
# Generated via uuid4().hex[:12]
GRAPH_ID_PATTERN = re.compile(r"^[0-9a-f]{12}$")


def is_valid_graph_id(value: str) -> bool:
    """
    Check if a string is a valid entity or connection ID (12 hex characters).

    Args:
        value: The string to validate

    Returns:
        True if the value matches the graph ID format, False otherwise
    """
    return bool(GRAPH_ID_PATTERN.match(value))
