"""SKGraft — transactional skill grafting for assistant projects.

Applies versioned skill packages (file additions, file replacements and
post-install commands) to a live project checkout, all-or-nothing.
Every write is sandboxed to the project root.
"""

__version__ = "0.1.0"

SKILLS_SYSTEM_VERSION = "0.1.0"

DATA_DIR = ".skgraft"
MANIFEST_FILE = "manifest.yaml"
