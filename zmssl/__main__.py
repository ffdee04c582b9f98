"""zmssl main entry point."""
import sys

from zmssl import main

if __name__ == '__main__':
    sys.exit(main.main())
