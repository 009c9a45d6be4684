"""
Multi-tenant contact management with spreadsheet bulk intake.
"""

__version__ = "0.1.0"
