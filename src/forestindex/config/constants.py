"""Configuration constants.

This module contains truly constant values that should NOT be user-configurable.
For configurable values, see models.py.
"""

DEFAULT_TREE_TYPE = "default"
"""Tree type assigned to nodes and content created without one."""

PAGE_SIZE_MAX = 1000
"""Maximum page size for listing queries."""

ROOT_LFT = 1
"""Left bound of the structural root after any root insertion."""

EMPTY_UPPER_BOUND = 1
"""Stand-in for max(rgt) when a tree type has no indexed node."""
