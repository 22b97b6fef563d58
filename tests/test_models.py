import uuid

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

from unified_inbox.messaging.errors import (
    ConversationConflictError,
    CustomerConflictError,
    DuplicateMessageError,
)
from unified_inbox.models import Conversation, Customer, Message


def test_schema_creates_expected_tables_and_unique_indexes(session_factory):
    inspector = inspect(session_factory.kw["bind"])
    assert {"customers", "conversations", "messages", "mailbox_connections"} <= set(
        inspector.get_table_names()
    )
    unique = {
        index["name"] for index in inspector.get_indexes("customers") if index["unique"]
    }
    assert {"uq_customers_phone", "uq_customers_email"} <= unique
    message_unique = {
        index["name"] for index in inspector.get_indexes("messages") if index["unique"]
    }
    assert "uq_messages_channel_external_id" in message_unique
    conversation_unique = {
        index["name"] for index in inspector.get_indexes("conversations") if index["unique"]
    }
    assert "uq_conversations_open_customer" in conversation_unique


def test_duplicate_phone_is_rejected_by_database(session_factory):
    with session_factory.begin() as session:
        session.add(Customer(phone="+1555"))
    with pytest.raises(IntegrityError):
        with session_factory.begin() as session:
            session.add(Customer(phone="+1555"))


def test_null_contact_keys_do_not_collide(session_factory):
    with session_factory.begin() as session:
        session.add_all([Customer(full_name="A"), Customer(full_name="B")])
    with session_factory() as session:
        assert session.query(Customer).count() == 2


def test_repository_maps_constraint_violations(repository):
    repository.create_customer({"email": "a@example.com"})
    with pytest.raises(CustomerConflictError):
        repository.create_customer({"email": "a@example.com"})


def test_duplicate_external_id_maps_to_duplicate_error(repository, session_factory):
    customer = repository.create_customer({"phone": "+1555"})
    conversation = repository.create_conversation(
        customer.id, title="t", primary_channel="sms"
    )
    values = {
        "conversation_id": conversation.id,
        "customer_id": customer.id,
        "channel": "sms",
        "direction": "incoming",
        "external_id": "SM1",
        "message_text": "hi",
    }
    repository.insert_message(values)
    with pytest.raises(DuplicateMessageError):
        repository.insert_message(values)

    with session_factory() as session:
        assert session.query(Message).count() == 1
        assert session.get(Conversation, conversation.id).status == "open"


def test_enrichment_update_rejects_non_ai_fields(repository):
    with pytest.raises(ValueError):
        repository.update_message_enrichment(uuid.uuid4(), {"message_text": "x"})


def test_second_open_conversation_for_customer_conflicts(repository):
    customer = repository.create_customer({"phone": "+1555"})
    first = repository.create_conversation(customer.id, title="t", primary_channel="sms")
    with pytest.raises(ConversationConflictError):
        repository.create_conversation(customer.id, title="t", primary_channel="email")

    repository.close_conversation(first.id)
    second = repository.create_conversation(customer.id, title="t", primary_channel="email")
    assert second.id != first.id
