"""
XP reward and redemption engine

Awards experience points for site activity on a variable reinforcement
schedule, tracks daily streaks and levels, grants one-time achievements and
converts XP into checkout discounts.
"""

__version__ = "1.0.0"
