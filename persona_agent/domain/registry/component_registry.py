from typing import Dict, List, Optional

import structlog

from persona_agent.domain.models import Action, Evaluator, Provider, Service, ServiceType

logger = structlog.get_logger(__name__)


def normalize_action_name(name: str) -> str:
    return name.lower().replace("_", "")


class ComponentRegistry:
    """Registry for the actions, evaluators, providers and services of one runtime"""

    def __init__(self):
        self.actions: List[Action] = []
        self.evaluators: List[Evaluator] = []
        self.providers: List[Provider] = []
        self.services: Dict[ServiceType, Service] = {}

    def register_action(self, action: Action) -> bool:
        """Register an action; a name already taken is skipped"""

        if any(existing.name == action.name for existing in self.actions):
            logger.warning("Action already registered, skipping", action=action.name)
            return False

        logger.info("Registering action", action=action.name)
        self.actions.append(action)
        return True

    def register_evaluator(self, evaluator: Evaluator) -> bool:
        if any(existing.name == evaluator.name for existing in self.evaluators):
            logger.warning("Evaluator already registered, skipping", evaluator=evaluator.name)
            return False

        logger.info("Registering evaluator", evaluator=evaluator.name)
        self.evaluators.append(evaluator)
        return True

    def register_provider(self, provider: Provider) -> bool:
        if provider in self.providers:
            logger.warning("Provider already registered, skipping", provider=type(provider).__name__)
            return False

        self.providers.append(provider)
        return True

    def register_service(self, service: Service) -> bool:
        """Register a service under its type; one service per type"""

        service_type = service.service_type
        if service_type in self.services:
            logger.warning("Service already registered, skipping", service_type=service_type.value)
            return False

        logger.info("Registering service", service_type=service_type.value)
        self.services[service_type] = service
        return True

    def get_service(self, service_type: ServiceType) -> Optional[Service]:
        service = self.services.get(ServiceType(service_type))
        if service is None:
            logger.debug("Service not found", service_type=ServiceType(service_type).value)
        return service

    def get_action(self, name: str) -> Optional[Action]:
        for action in self.actions:
            if action.name == name:
                return action
        return None

    def match_action(self, requested: str) -> Optional[Action]:
        """First action whose name, then whose similes, contain or are contained in the request.

        Comparison ignores case and underscores.
        """
        normalized = normalize_action_name(requested)
        if not normalized:
            return None

        for action in self.actions:
            name = normalize_action_name(action.name)
            if name and (name in normalized or normalized in name):
                return action

        for action in self.actions:
            for simile in action.similes:
                candidate = normalize_action_name(simile)
                if candidate and (candidate in normalized or normalized in candidate):
                    return action

        return None
