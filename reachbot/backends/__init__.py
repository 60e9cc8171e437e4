from reachbot.backends.base import LLMBackend, ModelReply, ToolCall, ToolSpec


def get_backend(provider: str) -> LLMBackend:
    """Factory function to create backend instance."""
    if provider == "claude":
        from reachbot.backends.claude_backend import ClaudeBackend
        return ClaudeBackend()
    elif provider == "gemini":
        from reachbot.backends.gemini_backend import GeminiBackend
        return GeminiBackend()
    else:
        raise ValueError(f"Unknown provider: {provider}. Available: ['claude', 'gemini']")


__all__ = ["LLMBackend", "ModelReply", "ToolCall", "ToolSpec", "get_backend"]
