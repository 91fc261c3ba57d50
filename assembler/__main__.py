import sys

from assembler.cli import main

raise SystemExit(main(sys.argv[1:]))
