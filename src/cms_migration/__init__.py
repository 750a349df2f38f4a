"""CMS Bridge - Migrate content from a JSON:API source into a collection API target."""

import logging

__version__ = "0.1.0"
__license__ = "Apache-2.0"

# httpx logs every request at INFO; keep the console for migration events
for _name in ("httpx", "httpcore"):
    logging.getLogger(_name).setLevel(logging.WARNING)
