"""
Study scheduler engine: prerequisite graph, adaptive spaced-repetition reminders,
performance analytics and recurring task generation over a MongoDB store.
"""

__version__ = "0.1.0"
