"""
Configuration — engine-wide constants.
Operator-configurable values come from settings.yaml via get_settings().
Token accounting and execution limits remain as code constants.
"""

# ── Room ──
MAX_CHARACTERS = 3
ROOM_FRESH_SECONDS = 2

# ── Token Accounting ──
LATIN_CHAR_COST = 0.4
IMAGE_TOKEN = 600
AUDIO_TOKEN = 1000
TOOL_CALL_OVERHEAD = 10

MIN_RESERVED_TOKENS = 1600
RESERVED_RATIO = 0.1
MIN_REPLY_TOKEN = 280
MAX_WX_TOKEN = 360
MIN_REASONING_TOKENS = 1024
MIN_REST_TOKEN = 100

# ── Compression ──
TOKEN_NEED_COMPRESS = 6000
COMPRESS_KEEP_TOKENS = 900
COMPRESS_MIN_CHATS = 3
SUMMARY_STAMP_OFFSET = 10

# ── History Window ──
LATEST_CHATS_LIMIT = 40
CONTINUE_CHATS_LIMIT = 16
CAN_REPLY_LOOKBACK = 10
MAX_IMAGES_AS_PARTS = 3
INDEX_TO_PRESERVE_IMAGES = 12
IMAGE_FRESH_SECONDS = 24 * 60 * 60

# ── Prompt Shape ──
MAX_PROMPT_TURNS = 8
CONTINUE_REASONING_TURNS = 3

# ── Execution Limits ──
DEFAULT_TIMEOUT = 59
PROVIDER_TIMEOUTS = {
    "deepseek": 50,
}
MAX_TRY_TIMES = 2
RETRY_WAIT_SECONDS = 1
MAX_TOOL_HOPS = 3
TOOL_KEEP_PROMPTS = 4
TOOL_MAX_PROMPTS = 5
TOOL_MIN_PROMPTS = 3

RATE_LIMIT_MARKERS = (
    "Rate limit reached for requests",
    "当前API请求过多，请稍后重试",
    "please try again after 1 seconds",
    "RateLimitError: 429",
)

# ── Reply Shape ──
CLIP_SOFT_CHARS = 600
CLIP_HARD_CHARS = 1200
TRUNCATE_MIN_LINES = 5
MAX_WORDS_TTS = 180
PARSE_LINK_MAX_CHARS = 6666
FALLBACK_MENU_EVERY = 3

# ── Quota ──
MAX_TIMES_FREE = 10
MAX_TIMES_MEMBERSHIP = 200
