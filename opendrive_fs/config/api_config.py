# opendrive_fs/config/api_config.py

DEFAULT_ENDPOINT = "https://dev.opendrive.com/api/v1"

# Root folder ID of every OpenDrive account
ROOT_FOLDER_ID = "0"

# Pacer defaults
MIN_SLEEP = 0.010  # seconds
MAX_SLEEP = 5 * 60
DECAY_CONSTANT = 1  # bigger for slower decay, exponential
ATTACK_CONSTANT = 1
MAX_RETRIES = 10

# Status codes worth another attempt
RETRY_ERROR_CODES = frozenset({
    400,  # Bad request (seen in "Next token is expired")
    401,  # Unauthorized (seen in "Token has expired")
    408,  # Request Timeout
    429,  # Rate exceeded
    500,  # Occasional 500 Internal Server Error
    502,  # Bad Gateway when doing big listings
    503,  # Service Unavailable
    504,  # Gateway Time-out
})

# Upload
CHUNK_SIZE = 10 * 1024 * 1024

# Modification times are stored with one second resolution
PRECISION = 1.0
