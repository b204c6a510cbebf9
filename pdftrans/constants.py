"""Shared constants for the PDF translator."""

# =============================================================================
# Admission & Scheduling
# =============================================================================
DEFAULT_MAX_CONCURRENT_TASKS = 2
"""Maximum number of document tasks running at the same time."""

DEFAULT_BATCH_SIZE = 3
"""Pages per batch; also the per-task ceiling on in-flight external calls."""

# =============================================================================
# Retry
# =============================================================================
DEFAULT_MAX_RETRIES = 3
"""Additional attempts after the first one for retryable failures."""

RETRY_BASE_DELAYS = (1.0, 2.0, 4.0)
"""Backoff base (seconds) per retry; later retries reuse the last value."""

RETRY_JITTER_RATIO = 0.1
"""Uniform jitter applied to each backoff delay (+/- this fraction)."""

RETRY_MIN_DELAY = 0.1
"""Floor (seconds) for a jittered backoff delay."""

# =============================================================================
# HTTP Client
# =============================================================================
DEFAULT_REQUEST_TIMEOUT = 30.0
"""Per-request timeout (seconds) for recognition/translation calls."""

DEFAULT_CONNECT_TIMEOUT = 10.0
"""Connect timeout (seconds) for recognition/translation calls."""

DEFAULT_MAX_TOKENS = 8192
"""max_tokens sent with every chat completion request."""

DEFAULT_OCR_MODEL = "gemini-3-flash-preview"
DEFAULT_TRANSLATE_MODEL = "gpt-5.2"
DEFAULT_TARGET_LANGUAGE = "Simplified Chinese"

# =============================================================================
# Input Validation
# =============================================================================
MAX_FILE_SIZE = 50 * 1024 * 1024
"""Largest accepted upload in bytes."""

PDF_MAGIC = b"%PDF"
"""Leading bytes of every accepted upload."""

# =============================================================================
# Rendering
# =============================================================================
RENDER_DPI = 72
RENDER_SCALE_TO = 800
"""Longest side (pixels) of a rendered page image."""

RENDER_JPEG_QUALITY = 70

# =============================================================================
# Progress & Observability
# =============================================================================
STAGE_WEIGHTS = {"render": 5.0, "recognize": 45.0, "translate": 45.0, "generate": 5.0}
"""Share of the overall percentage owned by each stage."""

DEFAULT_LOG_LIMIT = 100
"""Log entries kept per task; oldest entries are evicted first."""

DEFAULT_PREVIEW_CHARS = 300
"""Characters kept in per-page text previews."""

DEFAULT_POLL_INTERVAL = 0.3
"""Seconds between progress snapshots in the live progress stream."""

# =============================================================================
# Translation Short-Circuit
# =============================================================================
TRANSLATION_SKIP_RATIO = 0.7
"""Skip translation when the target-language character ratio exceeds this."""

# =============================================================================
# Storage & Reclamation
# =============================================================================
DEFAULT_CHECKPOINT_DIR = ".checkpoints"
DEFAULT_RETENTION_HOURS = 24.0
"""Terminal tasks older than this are reclaimed."""

DEFAULT_RECLAIM_INTERVAL = 600.0
"""Seconds between reclamation sweeps in the web service."""

# =============================================================================
# Output Layout (A4, points)
# =============================================================================
PAGE_WIDTH = 595.0
PAGE_HEIGHT = 842.0
PAGE_MARGIN = 50.0
FONT_SIZE = 11.0
LINE_HEIGHT = 16.0
CHAR_WIDTH_FACTOR = 0.55
"""Width of a narrow (ASCII) glyph relative to the font size."""
