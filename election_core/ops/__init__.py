from election_core.ops.backend_consistency import check_turnout_consistency, compare_filter_counts

__all__ = [
    "check_turnout_consistency",
    "compare_filter_counts",
]
