"""
Click-count milestones that trigger webhook notifications.
"""

MILESTONES = (100, 1000, 10000)


def crossed_milestones(last_milestone: int, new_count: int) -> list[int]:
    """
    Thresholds reached by new_count that have not been recorded yet.

    A threshold m is crossed when new_count >= m and last_milestone < m.
    Returned in ascending order so last_milestone can be advanced one step
    at a time.
    """
    return [m for m in MILESTONES if new_count >= m and last_milestone < m]
