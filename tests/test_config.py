from persona_agent.infrastructure.config import AgentSettings


def test_defaults():
    settings = AgentSettings()

    assert settings.conversation_length == 32
    assert settings.model_provider is None
    assert settings.embedding.allow_local is True
    assert settings.retry.max_attempts is None
    assert settings.retry.initial_delay == 1.0


def test_from_env_maps_variables():
    env = {
        "MODEL_PROVIDER": "anthropic",
        "MODEL_API_KEY": "key-123",
        "USE_OPENAI_EMBEDDING": "true",
        "OPENAI_API_KEY": "sk-test",
        "DISABLE_LOCAL_EMBEDDING": "1",
        "GENERATION_RETRY_DELAY": "0.5",
        "GENERATION_RETRY_ATTEMPTS": "4",
        "CONVERSATION_LENGTH": "12",
        "TAVILY_API_KEY": "tvly",
    }

    settings = AgentSettings.from_env(env)

    assert settings.model_provider == "anthropic"
    assert settings.token == "key-123"
    assert settings.embedding.use_openai_embedding is True
    assert settings.embedding.openai_api_key == "sk-test"
    assert settings.embedding.allow_local is False
    assert settings.retry.initial_delay == 0.5
    assert settings.retry.max_attempts == 4
    assert settings.conversation_length == 12
    assert settings.secrets["TAVILY_API_KEY"] == "tvly"


def test_from_env_token_falls_back_to_openai_key():
    settings = AgentSettings.from_env({"OPENAI_API_KEY": "sk-only"})

    assert settings.token == "sk-only"
    assert settings.embedding.use_openai_embedding is False
    assert settings.retry.max_attempts is None
