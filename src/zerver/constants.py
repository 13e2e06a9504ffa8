"""Global constants for zerver."""

# Environment variable names

ENV_CONFIG_VAR = "ZERVER"
ENV_PORT_VAR = "PORT"
ENV_SERVER_COMMAND_VAR = "ZERVER_SERVER"
ENV_CHANNEL_FD_VAR = "ZERVER_CHANNEL_FD"

# Configuration defaults

DEFAULT_PORT = 8888
DEFAULT_API_DIR = "zerver"
DEFAULT_SERVER_COMMAND = "zerver-server"

# Change handling (seconds)

CHANGE_QUIET_PERIOD = 1.0
WATCH_GRACE_PERIOD = 0.5

# Server shutdown (seconds)

SHUTDOWN_GRACE_PERIOD = 2.0

# Message channel

CHANNEL_BUFFER_LIMIT = 1 << 20

# Console

COMMAND_PROMPT = ">>> "
