import sys

from paperless_llm_processor.cli import main

sys.exit(main())
