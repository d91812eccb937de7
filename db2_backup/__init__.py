"""DB2 backup automation: connect, verify, back up into a session directory, prune."""

__version__ = "0.1.0"
