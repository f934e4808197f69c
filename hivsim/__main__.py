import sys

from hivsim.cli import main

sys.exit(main())
