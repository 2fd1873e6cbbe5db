from typing import Dict, List, Any, Optional, Union
import asyncio

import httpx
import structlog

from persona_agent.domain.context.memory import knowledge
from persona_agent.domain.context.memory.cache import CacheManager, DbCacheAdapter
from persona_agent.domain.context.memory.memory_manager import MemoryManager
from persona_agent.domain.context.parsing import compose_context
from persona_agent.domain.context.state_composer import StateComposer
from persona_agent.domain.context.templates import evaluation_template
from persona_agent.domain.context.formatting import (
    format_evaluator_examples,
    format_evaluator_names,
    format_evaluators,
)
from persona_agent.domain.errors import ConfigurationError
from persona_agent.domain.generation.embedding import LocalEmbedder, get_embedding_config
from persona_agent.domain.generation.models import ModelClass, ModelProviderName, resolve_provider
from persona_agent.domain.generation.text import generate_text_array
from persona_agent.domain.models import (
    Account,
    Action,
    Character,
    Evaluator,
    HandlerCallback,
    Memory,
    Plugin,
    Provider,
    Service,
    ServiceType,
    State,
    string_to_uuid,
)
from persona_agent.domain.registry.component_registry import ComponentRegistry
from persona_agent.infrastructure.config import AgentSettings
from persona_agent.infrastructure.observability.logging import agent_logger
from persona_agent.infrastructure.storage.database_adapter import DatabaseAdapter

logger = structlog.get_logger(__name__)

MESSAGES_TABLE = "messages"
DESCRIPTIONS_TABLE = "descriptions"
LORE_TABLE = "lore"
DOCUMENTS_TABLE = "documents"
FRAGMENTS_TABLE = "fragments"


class AgentRuntime:
    """Per-character orchestrator: memory, components, state and dispatch"""

    def __init__(
        self,
        character: Union[Character, Dict[str, Any]],
        database_adapter: Optional[DatabaseAdapter],
        settings: Optional[AgentSettings] = None,
        cache_manager: Optional[CacheManager] = None,
        managers: Optional[List[MemoryManager]] = None,
        services: Optional[List[Service]] = None,
        actions: Optional[List[Action]] = None,
        evaluators: Optional[List[Evaluator]] = None,
        providers: Optional[List[Provider]] = None,
        plugins: Optional[List[Plugin]] = None,
        agent_id: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if database_adapter is None:
            raise ConfigurationError("AgentRuntime requires a database adapter")

        self.character = character if isinstance(character, Character) else Character.model_validate(character)
        self.database_adapter = database_adapter
        self.settings = settings or AgentSettings()

        self.agent_id = self.character.id or agent_id or self._derived_agent_id()
        self.model_provider: ModelProviderName = resolve_provider(
            self.character.model_provider or self.settings.model_provider or ModelProviderName.OPENAI.value
        )
        self.image_model_provider: ModelProviderName = resolve_provider(
            self.character.image_model_provider or self.settings.image_model_provider or self.model_provider
        )
        self.token = self.settings.token
        self.server_url = self.settings.server_url

        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=self.settings.request_timeout)

        self.embedding_config = get_embedding_config(self.settings.embedding)
        self.local_embedder = LocalEmbedder(self.embedding_config.model)

        self.cache_manager = cache_manager or CacheManager(DbCacheAdapter(database_adapter, self.agent_id))

        self.memory_managers: Dict[str, MemoryManager] = {}
        self.message_manager = MemoryManager(self, MESSAGES_TABLE)
        self.description_manager = MemoryManager(self, DESCRIPTIONS_TABLE)
        self.lore_manager = MemoryManager(self, LORE_TABLE)
        self.documents_manager = MemoryManager(self, DOCUMENTS_TABLE)
        self.knowledge_manager = MemoryManager(self, FRAGMENTS_TABLE)
        for manager in (
            self.message_manager,
            self.description_manager,
            self.lore_manager,
            self.documents_manager,
            self.knowledge_manager,
        ):
            self.register_memory_manager(manager)
        for manager in managers or []:
            self.register_memory_manager(manager)

        self.registry = ComponentRegistry()
        self.state_composer = StateComposer(self)
        self._initialized = False

        all_plugins = [p for p in self.character.plugins if isinstance(p, Plugin)] + list(plugins or [])
        for plugin in all_plugins:
            logger.info("Registering plugin", plugin=plugin.name, agent_id=self.agent_id)
            self._register_components(plugin.actions, plugin.evaluators, plugin.providers, plugin.services)
        self._register_components(actions or [], evaluators or [], providers or [], services or [])

        logger.info(
            "Agent runtime created",
            agent_id=self.agent_id,
            character=self.character.name,
            model_provider=self.model_provider.value,
        )

    def _derived_agent_id(self) -> str:
        return string_to_uuid(self.character.name)

    def _register_components(
        self,
        actions: List[Action],
        evaluators: List[Evaluator],
        providers: List[Provider],
        services: List[Service],
    ) -> None:
        for action in actions:
            self.register_action(action)
        for evaluator in evaluators:
            self.register_evaluator(evaluator)
        for provider in providers:
            self.register_context_provider(provider)
        for service in services:
            self.registry.register_service(service)

    @property
    def actions(self) -> List[Action]:
        return self.registry.actions

    @property
    def evaluators(self) -> List[Evaluator]:
        return self.registry.evaluators

    @property
    def providers(self) -> List[Provider]:
        return self.registry.providers

    async def initialize(self) -> None:
        """Create the agent's account and self-room, start services and load character knowledge"""

        await self.ensure_room_exists(self.agent_id)
        await self.ensure_user_exists(
            self.agent_id,
            self.character.username or self.character.name,
            self.character.name,
        )
        await self.ensure_participant_in_room(self.agent_id, self.agent_id)

        for service in list(self.registry.services.values()):
            await service.initialize(self)
        self._initialized = True

        if self.character.knowledge:
            await knowledge.process_character_knowledge(self, self.character.knowledge)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    # Memory managers

    def register_memory_manager(self, manager: MemoryManager) -> None:
        if not manager.table_name:
            raise ConfigurationError("Memory manager must have a table name")
        if manager.table_name in self.memory_managers:
            logger.warning("Memory manager already registered, skipping", table=manager.table_name)
            return
        self.memory_managers[manager.table_name] = manager

    def get_memory_manager(self, table_name: str) -> Optional[MemoryManager]:
        return self.memory_managers.get(table_name)

    # Components

    def register_action(self, action: Action) -> None:
        self.registry.register_action(action)

    def register_evaluator(self, evaluator: Evaluator) -> None:
        self.registry.register_evaluator(evaluator)

    def register_context_provider(self, provider: Provider) -> None:
        self.registry.register_provider(provider)

    async def register_service(self, service: Service) -> None:
        """Register a service; after initialize() it is started right away"""
        if self.registry.register_service(service) and self._initialized:
            await service.initialize(self)

    def get_service(self, service_type: ServiceType) -> Optional[Service]:
        return self.registry.get_service(service_type)

    # Settings

    def get_setting(self, key: str) -> Optional[Any]:
        """Character secrets, then character settings, then runtime settings"""

        character_settings = self.character.settings
        if key in character_settings.secrets:
            return character_settings.secrets[key]
        extra = character_settings.model_extra or {}
        if key in extra:
            return extra[key]
        return self.settings.secrets.get(key)

    def get_conversation_length(self) -> int:
        return self.settings.conversation_length

    # Action dispatch and evaluation

    async def process_actions(
        self,
        message: Memory,
        responses: List[Memory],
        state: Optional[State] = None,
        callback: Optional[HandlerCallback] = None,
    ) -> None:
        """Run the handler of the action named by the first response"""

        requested = responses[0].content.action if responses else None
        if not requested:
            logger.warning("No action found in the response content", agent_id=self.agent_id)
            return

        action = self.registry.match_action(requested)
        agent_logger.log_action_dispatch(
            agent_id=self.agent_id,
            requested=requested,
            matched=action.name if action else None,
            message_id=message.id,
        )
        if action is None:
            logger.error("No action found for request", requested=requested)
            return
        if not action.has_handler:
            logger.error("Action has no handler", action=action.name)
            return

        await action.handler(self, message, state, {}, callback)

    async def evaluate(self, message: Memory, state: State, did_respond: bool = False) -> List[Any]:
        """Ask the model which evaluators apply and run their handlers in the order it names them"""

        async def _candidate(evaluator: Evaluator) -> Optional[Evaluator]:
            if not evaluator.has_handler:
                return None
            if not did_respond and not evaluator.always_run:
                return None
            return evaluator if await evaluator.validate(self, message, state) else None

        results = await asyncio.gather(*[_candidate(evaluator) for evaluator in self.evaluators])
        evaluators_data = [evaluator for evaluator in results if evaluator]
        if not evaluators_data:
            return []

        context = compose_context(
            {
                **state,
                "evaluators": format_evaluators(evaluators_data),
                "evaluatorNames": format_evaluator_names(evaluators_data),
                "evaluatorExamples": format_evaluator_examples(evaluators_data),
            },
            self.character.templates.get("evaluationTemplate") or evaluation_template,
        )
        selected = await generate_text_array(self, context, ModelClass.SMALL)

        by_name = {evaluator.name: evaluator for evaluator in evaluators_data}
        agent_logger.log_evaluator_run(
            agent_id=self.agent_id,
            candidates=list(by_name),
            selected=[str(name) for name in selected],
            did_respond=did_respond,
        )
        for name in selected:
            evaluator = by_name.get(name) if isinstance(name, str) else None
            if evaluator is not None:
                await evaluator.handler(self, message, state)
        return selected

    # Entities

    async def ensure_user_exists(
        self,
        user_id: str,
        user_name: Optional[str],
        name: Optional[str] = None,
        email: Optional[str] = None,
        source: Optional[str] = None,
    ) -> None:
        if await self.database_adapter.get_account_by_id(user_id):
            return

        await self.database_adapter.create_account(Account(
            id=user_id,
            name=name or user_name or "Unknown User",
            username=user_name or name or "Unknown",
            email=email or f"{user_name or 'Bot'}@{source or 'unknown'}",
            details={"summary": ""},
        ))
        logger.info("User created", user_id=user_id, user_name=user_name)

    async def ensure_room_exists(self, room_id: str) -> None:
        if await self.database_adapter.get_room(room_id):
            return
        await self.database_adapter.create_room(room_id)
        logger.info("Room created", room_id=room_id)

    async def ensure_participant_exists(self, user_id: str, room_id: str) -> None:
        """Add the user to the room if they participate in no room at all"""
        if not await self.database_adapter.get_participants_for_account(user_id):
            await self.database_adapter.add_participant(user_id, room_id)

    async def ensure_participant_in_room(self, user_id: str, room_id: str) -> None:
        participants = await self.database_adapter.get_participants_for_room(room_id)
        if user_id in participants:
            return
        await self.database_adapter.add_participant(user_id, room_id)
        logger.info("Participant linked to room", user_id=user_id, room_id=room_id)

    async def ensure_connection(
        self,
        user_id: str,
        room_id: str,
        user_name: Optional[str] = None,
        user_screen_name: Optional[str] = None,
        source: Optional[str] = None,
    ) -> None:
        """Make sure both the user and the agent exist and share the room"""

        await asyncio.gather(
            self.ensure_user_exists(self.agent_id, self.character.name, self.character.name, source=source),
            self.ensure_user_exists(
                user_id,
                user_name or f"User{user_id}",
                user_screen_name or f"User{user_id}",
                source=source,
            ),
            self.ensure_room_exists(room_id),
        )
        await asyncio.gather(
            self.ensure_participant_in_room(user_id, room_id),
            self.ensure_participant_in_room(self.agent_id, room_id),
        )

    # State

    async def compose_state(self, message: Memory, additional_keys: Optional[Dict[str, Any]] = None) -> State:
        return await self.state_composer.compose_state(message, additional_keys)

    async def update_recent_message_state(self, state: State) -> State:
        return await self.state_composer.update_recent_message_state(state)
