"""
Utility functions and classes used across the reference repository
"""
from .io import LockedFile, read_json, read_json_lines, append_json_line, write_atomically
from .logging import blab, BLAB
