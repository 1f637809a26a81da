"""All magic numbers and configuration constants."""

MAX_CHUNK_LENGTH = 1800             # chars, target upper bound per segment
PROVIDER_HARD_LIMIT = 5000          # chars, provider rejects segments longer than this
DEFAULT_MAX_CONCURRENCY = 3         # concurrent generation slots per job
GENERATION_TIMEOUT_S = 120.0        # seconds, per-segment generation timeout
GENERATION_RETRIES = 0              # scheduler-level retries of a failed segment
TTS_RETRY_COUNT = 3                 # max provider attempts per TTS call
TTS_RETRY_BASE_DELAY = 1.0          # seconds, base delay for exponential backoff
FETCH_TIMEOUT_S = 60.0              # seconds, per-segment download timeout
POLL_INTERVAL_S = 2.0               # seconds between status polls (HTTP provider)
MAX_POLLS = 30                      # status polls before giving up
FAILURE_THRESHOLD = 0.0             # failed fraction tolerated before assembly is refused
WORDS_PER_MINUTE = 150              # speaking pace used for duration estimates
DEFAULT_VOICE = "en-US-AriaNeural"
DEFAULT_QUALITY = "premium"
DEFAULT_SPEED = 1.0
OUTPUT_MEDIA_TYPE = "audio/mpeg"
OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
OPENROUTER_MODEL = "meta-llama/llama-3.2-90b-vision-instruct"
TRANSCRIPT_MINUTES = 15             # target length of generated transcripts
OUTPUT_DIR = "output"
VERSION = "0.1.0"
