from typing import Any, Dict, List, Optional
from sqlalchemy import text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool
from sqlmodel import Session, SQLModel, create_engine, select, col

from app.core.config import Environment, settings
from app.core.errors import NotFound
from app.core.logging import logger
from app.models.base import utcnow
from app.models.database import (
    Assistant,
    ChatFile,
    Conversation,
    Institution,
    InstitutionAssistant,
    InstitutionMembership,
    InstitutionSubscription,
    Message,
    Subscription,
    UserPackage,
)


def build_engine() -> Engine:
    """
    Create the Postgres engine with robust pooling settings.
    """
    connection_url = (
        f"postgresql+psycopg://{settings.POSTGRES_USER}:{settings.POSTGRES_PASSWORD}"
        f"@{settings.POSTGRES_HOST}:{settings.POSTGRES_PORT}/{settings.POSTGRES_DB}"
    )
    # pool_size: no. of connections to keep open permanently
    # max_overflow: no. of temporary connections to allow during spikes
    return create_engine(
        connection_url,
        pool_pre_ping=True,  # check if connection is alive before using it
        poolclass=QueuePool,
        pool_size=settings.POSTGRES_POOL_SIZE,
        max_overflow=settings.POSTGRES_MAX_OVERFLOW,
        pool_timeout=30,     # Fail if no connection available after 30s
        pool_recycle=1800,   # Recycle connections every 30 mins to prevent stale sockets
    )


# Database Service
class DatabaseService:
    """
    Service handling all database interactions.
    Manages the connection pool and provides clean CRUD interfaces over the
    catalog, entitlement, conversation and file tables.
    """
    def __init__(self, engine: Optional[Engine] = None):
        # Engines connect lazily, so building one here never touches the network
        self.engine = engine if engine is not None else build_engine()

    def init_db(self) -> None:
        """Create tables if they don't exist (code-first migration)."""
        try:
            SQLModel.metadata.create_all(self.engine)
            logger.info(
                "database_initialized",
                environment=settings.ENVIRONMENT.value,
                pool_size=settings.POSTGRES_POOL_SIZE,
                max_overflow=settings.POSTGRES_MAX_OVERFLOW,
            )
        except SQLAlchemyError as e:
            logger.error("database_initialization_error", error=str(e), environment=settings.ENVIRONMENT.value)
            # In Dev we want to crash. In prod the health check reports it.
            if settings.ENVIRONMENT != Environment.PRODUCTION:
                raise

    # Assistant catalog
    async def get_active_assistant(self, assistant_id: str) -> Optional[Assistant]:
        """Get an assistant only if it is still offered."""
        with Session(self.engine) as session:
            statement = select(Assistant).where(Assistant.id == assistant_id, Assistant.is_active == True)  # noqa: E712
            return session.exec(statement).first()

    async def list_assistants(self, active_only: bool = True) -> List[Assistant]:
        with Session(self.engine) as session:
            statement = select(Assistant)
            if active_only:
                statement = statement.where(Assistant.is_active == True)  # noqa: E712
            return list(session.exec(statement.order_by(Assistant.name)).all())

    # Entitlements
    async def get_active_subscription(self, user_id: str, assistant_id: str) -> Optional[Subscription]:
        """First active individual subscription for the pair, expired or not."""
        with Session(self.engine) as session:
            statement = (
                select(Subscription)
                .where(
                    Subscription.user_id == user_id,
                    Subscription.assistant_id == assistant_id,
                    Subscription.status == "active",
                )
                .order_by(col(Subscription.created_at).asc())
            )
            return session.exec(statement).first()

    async def get_active_packages(self, user_id: str) -> List[UserPackage]:
        with Session(self.engine) as session:
            statement = (
                select(UserPackage)
                .where(UserPackage.user_id == user_id, UserPackage.status == "active")
                .order_by(col(UserPackage.created_at).asc())
            )
            return list(session.exec(statement).all())

    async def list_user_subscriptions(self, user_id: str) -> List[Subscription]:
        with Session(self.engine) as session:
            statement = (
                select(Subscription)
                .where(Subscription.user_id == user_id, Subscription.status == "active")
                .order_by(col(Subscription.expires_at).asc())
            )
            return list(session.exec(statement).all())

    # Institutions
    async def get_institution_by_slug(self, slug: str) -> Optional[Institution]:
        with Session(self.engine) as session:
            statement = select(Institution).where(Institution.slug == slug, Institution.is_active == True)  # noqa: E712
            return session.exec(statement).first()

    async def get_membership(self, institution_id: str, user_id: str) -> Optional[InstitutionMembership]:
        with Session(self.engine) as session:
            statement = select(InstitutionMembership).where(
                InstitutionMembership.institution_id == institution_id,
                InstitutionMembership.user_id == user_id,
            )
            return session.exec(statement).first()

    async def get_institution_subscription(self, institution_id: str, user_id: str) -> Optional[InstitutionSubscription]:
        """Most recent institution-level subscription of a member, any status."""
        with Session(self.engine) as session:
            statement = (
                select(InstitutionSubscription)
                .where(
                    InstitutionSubscription.institution_id == institution_id,
                    InstitutionSubscription.user_id == user_id,
                )
                .order_by(col(InstitutionSubscription.created_at).desc())
            )
            return session.exec(statement).first()

    async def list_institution_assistants(self, institution_id: str) -> List[Assistant]:
        """Active catalog assistants the institution has enabled."""
        with Session(self.engine) as session:
            statement = (
                select(Assistant)
                .join(InstitutionAssistant, col(InstitutionAssistant.assistant_id) == col(Assistant.id))
                .where(
                    InstitutionAssistant.institution_id == institution_id,
                    InstitutionAssistant.is_enabled == True,  # noqa: E712
                    Assistant.is_active == True,  # noqa: E712
                )
                .order_by(Assistant.name)
            )
            return list(session.exec(statement).all())

    # Conversation Management
    async def create_conversation(
        self,
        user_id: str,
        assistant_id: str,
        title: str,
        thread_id: Optional[str] = None,
        institution_id: Optional[str] = None,
    ) -> Conversation:
        """Create a new conversation linked to a user and an assistant.

        Args:
            user_id: The ID of the user who owns the conversation
            assistant_id: Catalog id of the assistant
            title: Display title
            thread_id: Provider thread id, if one already exists
            institution_id: Set for conversations started through an institution

        Returns:
            Conversation: The created conversation
        """
        with Session(self.engine) as session:
            conversation = Conversation(
                user_id=user_id,
                assistant_id=assistant_id,
                title=title,
                thread_id=thread_id,
                institution_id=institution_id,
            )
            session.add(conversation)
            session.commit()
            session.refresh(conversation)
            logger.info("conversation_created", conversation_id=conversation.id, user_id=user_id, assistant_id=assistant_id)
            return conversation

    async def get_conversation(self, conversation_id: str, user_id: str) -> Optional[Conversation]:
        """Get a conversation by ID, only if it belongs to the user."""
        with Session(self.engine) as session:
            statement = select(Conversation).where(Conversation.id == conversation_id, Conversation.user_id == user_id)
            return session.exec(statement).first()

    async def list_conversations(self, user_id: str, institution_id: Optional[str] = None) -> List[Conversation]:
        """List a user's conversations, most recently active first."""
        with Session(self.engine) as session:
            statement = select(Conversation).where(Conversation.user_id == user_id)
            if institution_id is not None:
                statement = statement.where(Conversation.institution_id == institution_id)
            statement = statement.order_by(col(Conversation.updated_at).desc())
            return list(session.exec(statement).all())

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        """Delete a conversation and its messages.

        Returns:
            bool: True if deletion was successful, False if conversation not found
        """
        with Session(self.engine) as session:
            statement = select(Conversation).where(Conversation.id == conversation_id, Conversation.user_id == user_id)
            conversation = session.exec(statement).first()
            if not conversation:
                return False

            for message in session.exec(select(Message).where(Message.conversation_id == conversation_id)).all():
                session.delete(message)
            for chat_file in session.exec(select(ChatFile).where(ChatFile.conversation_id == conversation_id)).all():
                chat_file.conversation_id = None
                session.add(chat_file)
            session.delete(conversation)
            session.commit()
            logger.info("conversation_deleted", conversation_id=conversation_id)
            return True

    async def set_conversation_thread(self, conversation_id: str, expected_thread_id: Optional[str], thread_id: str) -> str:
        """Persist a repaired thread id unless another writer got there first.

        The update only applies while the row still holds expected_thread_id,
        so two requests repairing the same conversation cannot both win.

        Returns:
            str: The thread id now stored on the conversation

        Raises:
            NotFound: If the conversation no longer exists
        """
        with Session(self.engine) as session:
            statement = update(Conversation).where(col(Conversation.id) == conversation_id)
            if expected_thread_id is None:
                statement = statement.where(col(Conversation.thread_id).is_(None))
            else:
                statement = statement.where(col(Conversation.thread_id) == expected_thread_id)
            result = session.execute(statement.values(thread_id=thread_id, updated_at=utcnow()))
            session.commit()

            if result.rowcount == 1:
                logger.info("conversation_thread_repaired", conversation_id=conversation_id, thread_id=thread_id)
                return thread_id

            current = session.get(Conversation, conversation_id)
            if current is None:
                raise NotFound("conversation")
            logger.warning(
                "conversation_thread_repair_lost_race",
                conversation_id=conversation_id,
                discarded_thread_id=thread_id,
                stored_thread_id=current.thread_id,
            )
            return current.thread_id or thread_id

    async def touch_conversation(self, conversation_id: str) -> None:
        """Bump updated_at so the conversation sorts first."""
        with Session(self.engine) as session:
            session.execute(
                update(Conversation).where(col(Conversation.id) == conversation_id).values(updated_at=utcnow())
            )
            session.commit()

    # Messages
    async def create_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        attachments: Optional[List[Dict[str, Any]]] = None,
        error_code: Optional[str] = None,
    ) -> Message:
        """Append a message to a conversation."""
        with Session(self.engine) as session:
            message = Message(
                conversation_id=conversation_id,
                role=role,
                content=content,
                attachments=attachments or None,
                error_code=error_code,
            )
            session.add(message)
            session.commit()
            session.refresh(message)
            logger.debug("message_created", conversation_id=conversation_id, role=role, message_id=message.id)
            return message

    async def list_messages(self, conversation_id: str) -> List[Message]:
        with Session(self.engine) as session:
            statement = (
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(col(Message.created_at).asc())
            )
            return list(session.exec(statement).all())

    # Files
    async def create_chat_file(self, **fields: Any) -> ChatFile:
        with Session(self.engine) as session:
            chat_file = ChatFile(**fields)
            session.add(chat_file)
            session.commit()
            session.refresh(chat_file)
            logger.info(
                "chat_file_recorded",
                file_id=chat_file.id,
                direction=chat_file.direction,
                openai_file_id=chat_file.openai_file_id,
            )
            return chat_file

    async def get_chat_file(self, file_id: str, user_id: str) -> Optional[ChatFile]:
        with Session(self.engine) as session:
            statement = select(ChatFile).where(ChatFile.id == file_id, ChatFile.user_id == user_id)
            return session.exec(statement).first()

    async def health_check(self) -> bool:
        """Check database connection health.

        Returns:
            bool: True if database is healthy, False otherwise
        """
        try:
            with Session(self.engine) as session:
                # Execute a simple query to check connection
                session.execute(text("SELECT 1")).first()
                return True
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            return False


# Create a global singleton instance
database_service = DatabaseService()
