import sys

from .cli import main

# Guarded so dig mode's spawned search processes can import this module safely.
if __name__ == "__main__":
    sys.exit(main())
