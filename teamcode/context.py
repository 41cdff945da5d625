"""
Conversation state and compaction.

One ConversationState holds one agent's ordered history. It estimates the
token cost of that history cheaply (~4 chars per token plus a per-message
overhead) and only uses the estimate to decide WHEN to compact:

    estimate > context_window * compact_threshold   -> compact

Compaction keeps the leading system message and the last KEEP_RECENT
messages and asks the model to summarize everything in between:

    [system] [m1 m2 ... mN-4] [mN-3 mN-2 mN-1 mN]
                  |
                  v  provider.chat(summary prompt)
    [system] [user: summary] [assistant: ack] [mN-3 mN-2 mN-1 mN]

If the summary call fails, the middle is simply dropped:

    [system] [mN-3 mN-2 mN-1 mN]

The preserved tail is widened backwards when it would begin with tool
results, so an assistant message and its results are never split.
"""

import json
import logging
import math
from pathlib import Path

from teamcode.messages import content_text

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD = 4
PRIMING_TOKENS = 2

KEEP_RECENT = 4
MIN_MESSAGES = 4
PREVIEW_CHARS = 500

SKIPPED = "skipped"
SUMMARIZED = "summarized"
TRUNCATED = "truncated"

SUMMARY_SYSTEM = (
    "You are a conversation summarizer. Summarize the following conversation concisely, "
    "preserving all important technical details, decisions made, files modified, and "
    "current state. Be brief but complete."
)
SUMMARY_PREFIX = "[Previous conversation summary]: "
SUMMARY_ACK = ("I understand the context from our previous conversation. "
               "Let me continue from where we left off.")
SUMMARY_FALLBACK = "Unable to summarize previous context."

MODEL_CONFIGS = {
    "claude-sonnet-4-5-20250929": {"context_window": 200000, "compact_threshold": 0.8},
    "claude-opus-4-1-20250805": {"context_window": 200000, "compact_threshold": 0.8},
    "claude-haiku-4-5-20251001": {"context_window": 200000, "compact_threshold": 0.8},
    "qwen3:8b": {"context_window": 32768, "compact_threshold": 0.8},
    "qwen3:14b": {"context_window": 32768, "compact_threshold": 0.8},
    "qwen3:32b": {"context_window": 32768, "compact_threshold": 0.8},
    "qwen2.5-coder:7b": {"context_window": 32768, "compact_threshold": 0.8},
    "llama3.1:8b": {"context_window": 131072, "compact_threshold": 0.8},
    "llama3.1:70b": {"context_window": 131072, "compact_threshold": 0.8},
    "mistral:7b": {"context_window": 32768, "compact_threshold": 0.8},
}
DEFAULT_MODEL_CONFIG = {"context_window": 32768, "compact_threshold": 0.8}


def get_model_config(model: str) -> dict:
    return MODEL_CONFIGS.get(model, DEFAULT_MODEL_CONFIG)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_message_tokens(message: dict) -> int:
    total = MESSAGE_OVERHEAD + estimate_tokens(message.get("role", ""))
    total += estimate_tokens(content_text(message))
    if message.get("tool_calls"):
        total += estimate_tokens(json.dumps(message["tool_calls"]))
    return total


def estimate_messages_tokens(messages: list) -> int:
    return sum(estimate_message_tokens(m) for m in messages) + PRIMING_TOKENS


class ConversationState:
    def __init__(self, model: str, compact_threshold: float = None, transcript_path: Path = None):
        self.model = model
        self.compact_threshold = compact_threshold
        self.transcript_path = transcript_path
        self._messages = []

    @property
    def messages(self) -> list:
        return list(self._messages)

    def add(self, message: dict):
        self._messages.append(message)

    def add_many(self, messages: list):
        self._messages.extend(messages)

    def clear(self):
        self._messages = []

    def __len__(self):
        return len(self._messages)

    def token_estimate(self) -> int:
        return estimate_messages_tokens(self._messages)

    def token_limit(self) -> int:
        cfg = get_model_config(self.model)
        threshold = self.compact_threshold if self.compact_threshold is not None else cfg["compact_threshold"]
        return int(cfg["context_window"] * threshold)

    def needs_compaction(self) -> bool:
        return self.token_estimate() > self.token_limit()

    def _split(self):
        """(system message or None, middle, tail) of the current history."""
        messages = self._messages
        system = messages[0] if messages and messages[0].get("role") == "system" else None
        start = 1 if system else 0
        tail_start = max(start, len(messages) - KEEP_RECENT)
        while tail_start > start and messages[tail_start].get("role") == "tool":
            tail_start -= 1
        return system, messages[start:tail_start], messages[tail_start:]

    def compact(self, provider) -> str:
        """Summarize the middle of the history. Returns SKIPPED, SUMMARIZED
        or TRUNCATED (summary call failed, middle dropped)."""
        if len(self._messages) < MIN_MESSAGES:
            return SKIPPED
        system, middle, tail = self._split()
        if not middle:
            return SKIPPED

        logger.info("Context compaction triggered (%d messages)", len(self._messages))
        before = self.token_estimate()
        self.save_transcript()
        head = [system] if system else []

        try:
            response = provider.chat([
                {"role": "system", "content": SUMMARY_SYSTEM},
                {"role": "user", "content": self._previews(middle)},
            ])
        except Exception:
            logger.error("Compaction failed, dropping older messages without summary", exc_info=True)
            self._messages = head + tail
            return TRUNCATED

        summary = response.content or SUMMARY_FALLBACK
        self._messages = head + [
            {"role": "user", "content": SUMMARY_PREFIX + summary},
            {"role": "assistant", "content": SUMMARY_ACK},
        ] + tail
        logger.info("Compaction complete: %d -> %d tokens", before, self.token_estimate())
        return SUMMARIZED

    @staticmethod
    def _previews(messages: list) -> str:
        lines = []
        for m in messages:
            text = content_text(m)
            if m.get("tool_calls"):
                calls = ", ".join(tc.get("function", {}).get("name", "?") for tc in m["tool_calls"])
                text = f"{text} (tool calls: {calls})".strip()
            lines.append(f"[{m.get('role', '?')}]: {text[:PREVIEW_CHARS] or '(empty)'}")
        return "\n".join(lines)

    def save_transcript(self):
        """Append the full history to the transcript file before it is
        rewritten, so compaction never loses data for good."""
        if not self.transcript_path:
            return
        try:
            self.transcript_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.transcript_path, "a") as f:
                for msg in self._messages:
                    f.write(json.dumps(msg, default=str) + "\n")
        except OSError as e:
            logger.warning("Could not write transcript %s: %s", self.transcript_path, e)
