"""Conversation state owned by the database: identity, conversation window, dedup, context."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from supportbot.config import settings
from supportbot.logging_config import get_logger
from supportbot.models import ChatUser, ClientConfig, Conversation, Message, UserChannel
from supportbot.schemas import ContextMessage, ConversationContext, NormalizedMessage
from supportbot.services.state_machine import ConversationStatus, close, hand_off
from supportbot.services.token_tracker import check_token_cap

logger = get_logger("conversation_service")

DEFAULT_HANDOFF_MESSAGE = (
    "Your request has been escalated to a human agent. "
    "Someone from our team will reach you shortly. "
    "Your conversation has been saved, so there is no need to repeat yourself."
)

DEFAULT_SYSTEM_PROMPT = (
    "You are a friendly and professional customer support assistant.\n"
    "- Answer questions about products, services, orders and opening hours.\n"
    "- Keep replies concise (under 200 words).\n"
    "- For complaints, acknowledge, empathise and offer a clear resolution path.\n"
    "- If you cannot help, say so and offer to connect the customer with a human agent "
    "(they can type 'agent')."
)


def _find_user_id(db: Session, channel_type: str, channel_user_id: str) -> UUID | None:
    link = (
        db.query(UserChannel)
        .filter(UserChannel.channel_type == channel_type, UserChannel.channel_user_id == channel_user_id)
        .first()
    )
    return link.user_id if link else None


def resolve_user(db: Session, msg: NormalizedMessage) -> UUID:
    """Find the user behind (channel_type, channel_user_id) or create user + channel link.

    A concurrent delivery may create the same link first; the unique constraint
    rejects ours and the winner's id is returned.
    """
    user_id = _find_user_id(db, msg.channel_type, msg.channel_user_id)
    if user_id:
        return user_id

    try:
        with db.begin_nested():
            user = ChatUser(
                name=msg.user_name,
                phone=msg.channel_user_id if msg.channel_type == "WHATSAPP" else None,
            )
            db.add(user)
            db.flush()
            db.add(UserChannel(user_id=user.id, channel_type=msg.channel_type, channel_user_id=msg.channel_user_id))
            db.flush()
        db.commit()
    except IntegrityError:
        db.rollback()
        user_id = _find_user_id(db, msg.channel_type, msg.channel_user_id)
        if user_id:
            logger.info(f"User created concurrently, reusing {user_id}")
            return user_id
        raise

    logger.info("New user created", extra={"context": {"user_id": str(user.id), "channel": msg.channel_type}})
    return user.id


def resolve_conversation(db: Session, user_id: UUID, channel: str, client_id: str) -> UUID:
    """Return the open conversation for this user, or start a new one.

    Open means ACTIVE and updated within the timeout window, or HANDOFF (waiting
    for a human, kept until an agent closes it).

    Runs in one transaction holding a row lock on the user, so two workers handling
    the same user serialize here instead of opening two conversations.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=settings.conversation_timeout_minutes)
    try:
        db.query(ChatUser).filter(ChatUser.id == user_id).with_for_update().first()

        recent = (
            db.query(Conversation)
            .filter(
                Conversation.user_id == user_id,
                Conversation.channel == channel,
                Conversation.client_id == client_id,
                or_(
                    and_(
                        Conversation.status == ConversationStatus.ACTIVE.value,
                        Conversation.updated_at >= cutoff,
                    ),
                    Conversation.status == ConversationStatus.HANDOFF.value,
                ),
            )
            .order_by(Conversation.updated_at.desc())
            .first()
        )
        if recent:
            db.commit()
            return recent.id

        conversation = Conversation(
            user_id=user_id,
            channel=channel,
            client_id=client_id,
            status=ConversationStatus.ACTIVE.value,
            updated_at=datetime.now(timezone.utc),
        )
        db.add(conversation)
        db.flush()
        conversation_id = conversation.id
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("New conversation started", extra={"context": {"conversation_id": str(conversation_id)}})
    return conversation_id


def get_recent_messages(db: Session, conversation_id: UUID, limit: int | None = None) -> list[ContextMessage]:
    """Last ``limit`` messages in chronological order."""
    limit = limit or settings.context_window
    rows = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc())
        .limit(limit)
        .all()
    )
    return [ContextMessage(role=row.role, content=row.content) for row in reversed(rows)]


def load_context(db: Session, conversation_id: UUID, client_id: str) -> ConversationContext:
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if conversation is None:
        raise LookupError(f"Conversation {conversation_id} not found")

    messages = get_recent_messages(db, conversation_id)
    client_config = db.query(ClientConfig).filter(ClientConfig.client_id == client_id).first()
    token_status = check_token_cap(db, client_id)

    user = db.query(ChatUser).filter(ChatUser.id == conversation.user_id).first()

    system_prompt = (client_config.system_prompt if client_config else None) or DEFAULT_SYSTEM_PROMPT
    handoff_message = (client_config.fallback_message if client_config else None) or DEFAULT_HANDOFF_MESSAGE

    return ConversationContext(
        conversation_id=str(conversation_id),
        user_id=str(conversation.user_id),
        client_id=client_id,
        messages=messages,
        summary=conversation.summary,
        system_prompt=system_prompt,
        handoff_message=handoff_message,
        conversation_status=conversation.status,
        token_usage_limit=token_status.cap or settings.default_monthly_token_cap,
        monthly_token_usage=token_status.current_usage,
        user_name=user.name if user else None,
    )


def save_user_message(
    db: Session,
    conversation_id: UUID,
    text: str,
    channel_message_id: str | None = None,
) -> bool:
    """Persist an inbound message. False means the channel_message_id was seen before.

    This is the single idempotency gate for redelivered webhooks: on False the
    caller must stop processing the message.
    """
    try:
        with db.begin_nested():
            db.add(
                Message(
                    conversation_id=conversation_id,
                    role="USER",
                    content=text,
                    channel_message_id=channel_message_id,
                    created_at=datetime.now(timezone.utc),
                )
            )
            db.flush()
        db.commit()
        return True
    except IntegrityError:
        db.rollback()
        return False


def update_message_classification(
    db: Session,
    channel_message_id: str | None,
    intent: str,
    confidence: float,
    priority: int,
) -> None:
    if not channel_message_id:
        return
    db.query(Message).filter(Message.channel_message_id == channel_message_id).update(
        {"intent": intent, "confidence": confidence, "priority": priority},
        synchronize_session=False,
    )
    db.commit()


def count_user_messages(db: Session, conversation_id: UUID) -> int:
    return (
        db.query(func.count(Message.id))
        .filter(Message.conversation_id == conversation_id, Message.role == "USER")
        .scalar()
        or 0
    )


def is_vip_user(db: Session, user_id: UUID) -> bool:
    user = db.query(ChatUser).filter(ChatUser.id == user_id).first()
    return bool(user and user.is_vip)


def set_handoff_status(db: Session, conversation_id: UUID) -> None:
    """Move the conversation to HANDOFF. One-way; already handed off is a no-op."""
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if conversation is None:
        raise LookupError(f"Conversation {conversation_id} not found")

    current = ConversationStatus(conversation.status)
    if current == ConversationStatus.HANDOFF:
        return

    conversation.status = hand_off(current).value
    conversation.updated_at = datetime.now(timezone.utc)
    db.commit()


def save_ai_response(db: Session, conversation_id: UUID, text: str) -> None:
    """Store an ASSISTANT message and bump the conversation timestamp in one commit."""
    now = datetime.now(timezone.utc)
    try:
        db.add(Message(conversation_id=conversation_id, role="ASSISTANT", content=text, created_at=now))
        db.query(Conversation).filter(Conversation.id == conversation_id).update(
            {"updated_at": now},
            synchronize_session=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise


def close_conversation(db: Session, conversation_id: UUID) -> bool:
    """Close the conversation. Returns False if it was already CLOSED."""
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if conversation is None:
        raise LookupError(f"Conversation {conversation_id} not found")

    current = ConversationStatus(conversation.status)
    if current == ConversationStatus.CLOSED:
        return False

    conversation.status = close(current).value
    conversation.updated_at = datetime.now(timezone.utc)
    db.commit()
    logger.info("Conversation closed", extra={"context": {"conversation_id": str(conversation_id), "from": current.value}})
    return True
