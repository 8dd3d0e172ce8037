import sys

from pagecapture.cli import main

sys.exit(main())
