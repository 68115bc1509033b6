"""Run mailpipe as a module.

Usage:
    python -m mailpipe serve
    python -m mailpipe --help
"""

from dotenv import load_dotenv

load_dotenv()  # MAILPIPE_* overrides must be in the environment before config loads

from mailpipe.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
