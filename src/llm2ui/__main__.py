import sys

from llm2ui.cli import main

sys.exit(main())
