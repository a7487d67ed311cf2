import sys

from campaigngraph.cli import main

sys.exit(main())
