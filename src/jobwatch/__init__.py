"""
jobwatch - submit batch import jobs and track them to completion.

Combines a server-push event stream with polling to follow job progress and
keeps the bearer credential renewed ahead of its expiry.
"""

__version__ = "1.0.0"
