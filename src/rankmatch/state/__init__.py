"""State/store layer.

This package is the single source of truth for how reconciled snapshots and
local mutations are merged into the per-match cached state.
"""
