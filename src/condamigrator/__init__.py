"""
condamigrator - move a machine from Anaconda/Miniconda to Miniforge
"""

__version__ = "0.1.0"
