import sys

from dbmigrate.cli import main

sys.exit(main())
