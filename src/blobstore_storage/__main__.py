import sys

from blobstore_storage.cli import main

sys.exit(main())
