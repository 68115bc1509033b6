"""mailpipe: mailbox change-log sync and durable job queue."""

__version__ = "0.1.0"
