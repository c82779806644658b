"""Global constants: reserved-state layout, commit encoding, defaults."""

# Directory (relative to the working tree root) holding the reserved state
RESERVED_DIR = "reserved"

# Files inside RESERVED_DIR
GENESIS_INFO_FILE = "genesis_info.json"
MEMBERS_DIR = "members"
LEADER_ORDER_FILE = "consensus_leader_order.json"
VERSION_FILE = "version"

# Trailer marking a commit as written through the semantic path
SEMANTIC_TRAILER = "Semantic-Diff"

# Domain used to build author e-mails for semantic commits
SEMANTIC_EMAIL_DOMAIN = "members.govledger"

# Identity written into the local config of new or cloned repositories
DEFAULT_COMMITTER_NAME = "govledger"
DEFAULT_COMMITTER_EMAIL = "govledger@localhost"

# Blocking worker pool
DEFAULT_MAX_WORKERS = 4
WORKER_THREAD_PREFIX = "govledger-git"

# Parallel jobs for ``git fetch --all``
DEFAULT_FETCH_JOBS = 16
