"""Constants for personahub."""

# Private store directory inside the working directory
PERSONAHUB_DIR = ".personahub"

# Files and directories inside PERSONAHUB_DIR
CONFIG_FILE = "config.yaml"
DATABASE_FILE = "history.db"
SNAPSHOTS_DIR = "snapshots"
STAGING_DIR = "staging"
LOCK_FILE = "lock"

# Content hashes are SHA-256 hex digests truncated to this many characters
HASH_LENGTH = 16

# Seconds to wait for the writer lock before giving up
LOCK_TIMEOUT = 5

# Version
PERSONAHUB_VERSION = "0.1.0"
