import tiktoken

from persona_agent.infrastructure.observability.logging import agent_logger


def trim_tokens(context: str, max_tokens: int, model: str = "gpt-4o") -> str:
    """Keep the last max_tokens tokens of context.

    When the tokenizer is unavailable the context is cut to its last
    max_tokens * 4 characters instead. That cut is an estimate of about four
    characters per token, so the result can exceed max_tokens tokens.
    """
    if not context:
        return ""
    if max_tokens <= 0:
        raise ValueError("max_tokens must be positive")

    try:
        encoding = tiktoken.encoding_for_model(model)
        tokens = encoding.encode(context)
        if len(tokens) <= max_tokens:
            return context
        return encoding.decode(tokens[-max_tokens:])
    except Exception as e:
        agent_logger.log_fallback(
            operation="trim_tokens",
            reason=str(e),
            substitute="character suffix",
            details={"model": model, "max_tokens": max_tokens},
        )
        return context[-max_tokens * 4:]
