"""
Service layer for the figure analyses.

This subpackage contains code that interacts with the outside world:
files, file formats, figures written to disk.
"""
