"""System prompts for the assistant and the summarizer."""

from typing import Optional

ASSISTANT_PROMPT = "You are a helpful AI assistant."

SUMMARIZER_PROMPT = (
    "You are a helpful assistant that creates concise summaries of conversations. "
    "Summarize the key points and context in 2-3 sentences."
)

SUMMARY_FALLBACK = "Summary generation failed."


def get_assistant_prompt(summary: Optional[str] = None) -> str:
    """Assistant system prompt, with the running summary appended when present."""
    if summary:
        return (
            f"{ASSISTANT_PROMPT}\n\n## Conversation Context\n\n"
            f"Previous conversation summary: {summary}"
        )
    return ASSISTANT_PROMPT


def get_summarizer_prompt() -> str:
    return SUMMARIZER_PROMPT
