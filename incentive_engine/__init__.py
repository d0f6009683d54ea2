"""Partner incentive engine package.

Having this file ensures the 'incentive_engine' directory is recognized as a
standard Python package during test discovery and when installed.
"""

__all__: list[str] = []
