import sys

from fmrmatch.cli import main

sys.exit(main())
