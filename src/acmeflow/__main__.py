import sys

from acmeflow import main

if __name__ == '__main__':
    sys.exit(main.main())
