"""Smart Library lending platform.

Loan lifecycle for a school library plus the scheduled due-date and overdue
notifications that go with it.
"""

__version__ = "0.1.0"
