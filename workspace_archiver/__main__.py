import sys

from workspace_archiver.cli import main

if __name__ == "__main__":
    sys.exit(main())
