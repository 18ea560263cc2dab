import sys

from repobundle.cli import main


sys.exit(main())
