import sys

from commgate.cli import main

sys.exit(main())
