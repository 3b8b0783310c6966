"""
Sales Operations Revenue Engine

Reconciles raw order records into trustworthy net revenue and profit,
attributes them to reps, vendors, customers and periods, and projects
the current period forward.
"""

__version__ = "1.0.0"
