import threading
from datetime import timedelta

from conftest import utc
from unified_inbox.messaging.conversations import ConversationRouter
from unified_inbox.messaging.identity import IdentityResolver
from unified_inbox.messaging.models import Channel, CustomerFields, NormalizedMessage


def _message(received_at, channel=Channel.SMS):
    return NormalizedMessage(
        channel=channel,
        message_text="hello",
        customer=CustomerFields(phone="+1555"),
        received_at=received_at,
    )


def _customer(repository, **fields):
    return IdentityResolver(repository).resolve(CustomerFields(**fields), Channel.SMS)


def test_open_conversation_is_reused(repository):
    router = ConversationRouter(repository)
    customer = _customer(repository, phone="+1555", full_name="Ann")

    first = router.route(customer, _message(utc(2024, 1, 1)))
    second = router.route(customer, _message(utc(2024, 1, 2), Channel.EMAIL))

    assert first.id == second.id
    assert first.title == "Ann"
    assert first.primary_channel == "sms"


def test_untitled_customer_gets_default_title(repository):
    customer = _customer(repository, phone="+1555")
    conversation = ConversationRouter(repository).route(customer, _message(utc(2024, 1, 1)))
    assert conversation.title == "New conversation"


def test_closed_conversation_is_not_reused(repository):
    router = ConversationRouter(repository)
    customer = _customer(repository, phone="+1555")
    first = router.route(customer, _message(utc(2024, 1, 1)))

    router.close(first.id)
    second = router.route(customer, _message(utc(2024, 1, 2)))

    assert second.id != first.id
    assert repository.get_conversation(first.id).status == "closed"


def test_inactivity_timeout_rolls_over_stale_conversation(repository):
    router = ConversationRouter(repository, inactivity_timeout=timedelta(days=30))
    customer = _customer(repository, phone="+1555")
    first = router.route(customer, _message(utc(2024, 1, 1)))
    repository.touch_conversation(first.id, last_message_at=utc(2024, 1, 1))

    recent = router.route(customer, _message(utc(2024, 1, 20)))
    stale = router.route(customer, _message(utc(2024, 3, 1)))

    assert recent.id == first.id
    assert stale.id != first.id
    assert repository.get_conversation(first.id).status == "closed"


def test_touch_never_moves_recency_backwards(repository):
    customer = _customer(repository, phone="+1555")
    conversation = ConversationRouter(repository).route(customer, _message(utc(2024, 1, 5)))

    repository.touch_conversation(conversation.id, last_message_at=utc(2024, 1, 5))
    repository.touch_conversation(conversation.id, last_message_at=utc(2024, 1, 3))

    assert repository.get_conversation(conversation.id).last_message_at == utc(2024, 1, 5)


def test_concurrent_routing_shares_one_open_conversation(repository, monkeypatch):
    customer = _customer(repository, phone="+1555")
    lookup = repository.find_open_conversation
    barrier = threading.Barrier(2, timeout=5)
    first_lookups = []
    lock = threading.Lock()

    def racing_lookup(customer_id):
        found = lookup(customer_id)
        with lock:
            first = threading.get_ident() not in first_lookups
            first_lookups.append(threading.get_ident())
        if first:
            # Both threads miss the open conversation before either creates it.
            barrier.wait()
        return found

    monkeypatch.setattr(repository, "find_open_conversation", racing_lookup)
    router = ConversationRouter(repository)
    results = []

    def route():
        results.append(router.route(customer, _message(utc(2024, 1, 1))))

    threads = [threading.Thread(target=route) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(results) == 2
    assert results[0].id == results[1].id
    _, total = repository.list_conversations(status="open", limit=10, offset=0)
    assert total == 1
