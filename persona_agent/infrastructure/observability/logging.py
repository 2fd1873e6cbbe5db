import structlog
import logging
import sys
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "persona-agent"
) -> None:
    """Setup structured logging configuration"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_agent_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_agent_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add agent and room ids bound in the context to every entry"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    context = structlog.contextvars.get_contextvars()
    for key in ("agent_id", "room_id"):
        if context.get(key) and key not in event_dict:
            event_dict[key] = context[key]

    return event_dict


class AgentLogger:
    """Specialized logger for runtime events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_action_dispatch(
        self,
        agent_id: str,
        requested: Optional[str],
        matched: Optional[str],
        message_id: Optional[str] = None,
        **kwargs
    ):
        """Log the outcome of matching a requested action"""

        self.logger.info(
            "action_dispatch",
            agent_id=agent_id,
            requested=requested,
            matched=matched,
            message_id=message_id,
            **kwargs
        )

    def log_evaluator_run(
        self,
        agent_id: str,
        candidates: List[str],
        selected: List[str],
        did_respond: bool,
    ):
        """Log which evaluators were offered and which ran"""

        self.logger.info(
            "evaluator_run",
            agent_id=agent_id,
            candidates=candidates,
            selected=selected,
            did_respond=did_respond
        )

    def log_generation_attempt(
        self,
        provider: str,
        model: str,
        model_class: str,
        context_length: int,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        """Log a single call to a text provider"""

        self.logger.info(
            "generation_attempt",
            provider=provider,
            model=model,
            model_class=model_class,
            context_length=context_length,
            duration_ms=duration_ms,
            success=success,
            error=error
        )

    def log_fallback(
        self,
        operation: str,
        reason: str,
        substitute: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log a branch that substituted a default instead of failing"""

        self.logger.warning(
            "fallback",
            operation=operation,
            reason=reason,
            substitute=substitute,
            details=details or {}
        )


agent_logger = AgentLogger("persona_agent")
