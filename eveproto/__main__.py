import sys

from eveproto.cli import main

sys.exit(main())
