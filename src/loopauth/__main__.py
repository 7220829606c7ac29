"""Module entrypoint for `python -m loopauth`."""

from __future__ import annotations

from loopauth.cli import main_entry


if __name__ == "__main__":
    main_entry()
