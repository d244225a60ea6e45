import sys

from mwslate.cli import main

sys.exit(main())
