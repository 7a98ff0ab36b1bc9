"""
Utility modules for condamigrator.
"""
