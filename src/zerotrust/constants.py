"""
Zerotrust - Global Constants and Configuration Values

This module defines all constants used throughout the Zerotrust package.
Wire-protocol markers, timeouts and pool sizes are centralized here.

Version: 1.0.0
"""

# Version Information
VERSION = "1.0.0"
APP_NAME = "Zerotrust"

# Network Constants
DEFAULT_HOST = "0.0.0.0"
LOCALHOST = "127.0.0.1"
DEFAULT_PEER_PORT = 9000
DEFAULT_ECHO_PORT = 12345
LISTEN_BACKLOG = 1

# Connection Timeouts (seconds)
CONNECT_TIMEOUT = 15
LISTEN_READY_TIMEOUT = 5
CONNECT_READY_TIMEOUT = 15
HANDSHAKE_TIMEOUT = 15
READY_POLL_INTERVAL = 0.05  # 50 ms between readiness checks

# Session Resources
SESSION_WORKER_THREADS = 4
PUMP_JOIN_TIMEOUT = 2.0
EXECUTOR_SHUTDOWN_TIMEOUT = 5.0

# Wire Protocol
PEER_ID_PREFIX = "PEER_ID:"
LINE_ENCODING = "utf-8"
LINE_TERMINATOR = "\n"
MAX_LINE_LENGTH = 64 * 1024  # 64 KB per protocol line
ECHO_REPLY_PREFIX = "Echo: "

# Cryptography Constants
KEY_SIZE = 32  # 256 bits for AES-256-GCM
NONCE_SIZE = 12  # 96 bits for GCM
TAG_SIZE = 16  # 128-bit GCM authentication tag
DH_GENERATOR = 2
DEFAULT_KEY_EXCHANGE_GROUP = "x25519"

# RFC 3526 group 14: 2048-bit MODP prime
MODP_2048_PRIME = int(
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD1"
    "29024E088A67CC74020BBEA63B139B22514A08798E3404DD"
    "EF9519B3CD3A431B302B0A6DF25F14374FE1356D6D51C245"
    "E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3D"
    "C2007CB8A163BF0598DA48361C55D39A69163FA8FD24CF5F"
    "83655D23DCA3AD961C62F356208552BB9ED529077096966D"
    "670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
    "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9"
    "DE2BCBF6955817183995497CEA956AE515D2261898FA0510"
    "15728E5A8AACAA68FFFFFFFFFFFFFFFF",
    16,
)

# File Paths
DEFAULT_DATA_DIR = "~/.zerotrust"
CONFIG_FILENAME = "config.toml"

# Logging Configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5
LOG_PREVIEW_LENGTH = 20  # characters of plaintext shown in debug logs

# Session State Machine
STATE_HISTORY_MAX = 100
