import sys

from hsbalance.cli import main

sys.exit(main())
