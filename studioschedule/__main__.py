"""
Package entry point.

Allows running the application via:

    python -m studioschedule

This simply forwards execution to studioschedule.cli.main().
"""

from studioschedule.cli import main

if __name__ == "__main__":
    main()
