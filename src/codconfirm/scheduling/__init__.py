"""
Business-hour scheduling helpers.
"""

from codconfirm.scheduling.business_hours import is_within_business_hours, next_eligible_time

__all__ = ["is_within_business_hours", "next_eligible_time"]
