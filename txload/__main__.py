import sys

from txload.cli import main

sys.exit(main())
