"""Entry point for `python -m tidings`."""

import sys


def main():
    from tidings.app import run
    sys.exit(run())


if __name__ == "__main__":
    main()
