"""Constants shared across the tenant mover."""

# Pantheon appserver SSH/rsync port
DEFAULT_SSH_PORT = 2222

DEFAULT_STAGING_ROOT = "/tmp/files"
DEFAULT_REMOTE_FILES_ROOT = "files/sites"
DEFAULT_HOST_TEMPLATE = "appserver.{stage}.{site_uuid}.drush.in"
DEFAULT_USER_TEMPLATE = "{stage}.{site_uuid}"

# WordPress multisite layout
DEFAULT_TABLE_PREFIX = "wp_"
DEFAULT_DIRECTORY_TABLE = "blogs"
DEFAULT_DIRECTORY_KEY = "blog_id"

# Environments on Pantheon idle after roughly an hour without traffic
DEFAULT_WAKE_TTL_SECONDS = 900

DEFAULT_BLOCK_SIZE = 100_000
LEDGER_SCHEMA_VERSION = 1

# Seconds between SIGTERM and SIGKILL when tearing down a process group
TERMINATE_GRACE_SECONDS = 5.0
POLL_INTERVAL_SECONDS = 0.2
READ_CHUNK_SIZE = 65536

LOGGER_NAME = "wpms_mover"
