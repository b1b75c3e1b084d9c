import sys

from zzharness.cli import main

sys.exit(main())
