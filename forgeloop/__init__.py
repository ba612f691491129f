"""
ForgeLoop - generate, validate, repair and supervise web projects
"""

__version__ = "1.0.0"
