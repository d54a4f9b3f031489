import sys

from opendrive_fs.main import main

if __name__ == "__main__":
    sys.exit(main())
