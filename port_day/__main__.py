"""Module entry point: python -m port_day ..."""

from __future__ import annotations

from port_day.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
