"""Named constants for values that appear in multiple places or need explanation."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Run loop
# ---------------------------------------------------------------------------

# Step budget when neither the caller nor the config file sets one.
DEFAULT_MAX_STEPS: int = 20

# Upper bound on tool calls from one model response running at the same time.
DEFAULT_MAX_TOOL_CONCURRENCY: int = 4

# Name of the tool whose invocation ends the run successfully.
FINAL_ANSWER_TOOL_NAME: str = "final_answer"

# ---------------------------------------------------------------------------
# Output size limits
# ---------------------------------------------------------------------------

# Maximum characters kept from a single tool output when rendered as an
# observation. The raw value is still returned as action_output.
MAX_OBSERVATION_CHARS: int = 20_000

# Maximum characters of model content copied into a lifecycle event.
MAX_EVENT_CONTENT_CHARS: int = 2_000

# ---------------------------------------------------------------------------
# Timeouts
# ---------------------------------------------------------------------------

# Default HTTP read timeout for a single chat-completions call.
LLM_CHAT_DEFAULT_TIMEOUT_S: float = 120.0

# Default wall-clock limit for one code action in the subprocess sandbox.
SANDBOX_DEFAULT_TIMEOUT_S: int = 30
