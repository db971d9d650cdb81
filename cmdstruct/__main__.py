"""python -m cmdstruct <build|commands|extract> ..."""
import sys

from cmdstruct.cli import main

if __name__ == '__main__':
    sys.exit(main())
