import sys

from rulesync.orchestrator import main

sys.exit(main())
