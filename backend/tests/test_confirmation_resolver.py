from __future__ import annotations

import pytest

from app.services.complex_input import ComplexInputPolicy, looks_like_complex_input
from app.services.confirmation_resolver import ConfirmationPolicy, ConfirmationResolver
from app.services.conversation_store import ConversationStore, MessageRole

COMPLEX_REQUEST = (
    "请在10月16日15:00之前登录教务系统填写奖学金申请表，然后打印申请表并签署，"
    "最后提交到学院办公室，需于周五前完成全部流程。"
)


def _analysis(original_input: str | None = COMPLEX_REQUEST) -> dict:
    analysis = {"suggested_tasks": [{"title": "填写奖学金申请表"}], "requires_confirmation": True}
    if original_input is not None:
        analysis["original_input"] = original_input
    return {"task_analysis": analysis}


def _pending_session(store: ConversationStore, session_id: str = "s1", **analysis_kwargs) -> None:
    store.append(session_id, MessageRole.USER, COMPLEX_REQUEST)
    store.append(session_id, MessageRole.ASSISTANT, "Please confirm the tasks", _analysis(**analysis_kwargs))


@pytest.mark.parametrize(
    "text, expected",
    [
        ("好的", True),
        ("确认，就这样", True),
        ("没问题", True),
        ("OK go", True),
        ("okay", True),
        ("Yes please", True),
        ("book a room", False),
        ("what did I do yesterday", False),
        ("我这周末可以去银行办卡吗？", False),
        ("OK, go ahead and book it", False),
        ("", False),
    ],
)
def test_affirmative_detection(text: str, expected: bool) -> None:
    assert ConfirmationPolicy().is_affirmative(text) is expected


def test_affirmative_length_is_configurable() -> None:
    assert ConfirmationPolicy(max_length=30).is_affirmative("OK, go ahead and book it")


def test_complex_input_policy_defaults() -> None:
    assert looks_like_complex_input(COMPLEX_REQUEST)
    # Two verbs and a time, but too short.
    assert not looks_like_complex_input("10月16日前填写并提交")
    assert not looks_like_complex_input("明天去超市买点水果和牛奶，顺便给家里打个电话问问周末有什么安排吧好不好呀朋友们大家")


def test_resolves_pending_analysis_from_conversation_store() -> None:
    store = ConversationStore()
    _pending_session(store)
    store.append("s1", MessageRole.USER, "好的")
    resolver = ConfirmationResolver(store)

    outcome = resolver.resolve("好的", session_id="s1", history=[{"role": "user", "content": "ignored"}])

    assert outcome.is_confirmation is True
    assert outcome.original_input == COMPLEX_REQUEST
    assert outcome.resolved


def test_analysis_without_original_falls_back_to_complex_input_lookup() -> None:
    store = ConversationStore()
    _pending_session(store, original_input=None)

    outcome = ConfirmationResolver(store).resolve("确认", session_id="s1")

    assert outcome.original_input == COMPLEX_REQUEST


def test_affirmative_is_not_a_confirmation_once_answered() -> None:
    store = ConversationStore()
    _pending_session(store)
    store.append("s1", MessageRole.USER, "好的")
    store.append("s1", MessageRole.ASSISTANT, "Created 1 task(s)")

    outcome = ConfirmationResolver(store).resolve("好的", session_id="s1")

    assert outcome.is_confirmation is False


def test_falls_back_to_supplied_history() -> None:
    resolver = ConfirmationResolver(ConversationStore())
    history = [
        {"role": "user", "content": COMPLEX_REQUEST},
        {"role": "assistant", "content": "Please confirm", "metadata": _analysis(original_input=None)},
    ]

    outcome = resolver.resolve("可以", session_id="unknown", history=history)

    assert outcome.original_input == COMPLEX_REQUEST


def test_affirmative_without_pending_analysis() -> None:
    store = ConversationStore()
    store.append("s1", MessageRole.USER, COMPLEX_REQUEST)
    store.append("s1", MessageRole.ASSISTANT, "Created 3 task(s)")
    resolver = ConfirmationResolver(store)

    outcome = resolver.resolve("好的", session_id="s1")

    assert outcome.is_confirmation is False
    assert not outcome.resolved


def test_pending_analysis_without_any_request_is_unresolved() -> None:
    store = ConversationStore()
    store.append("s1", MessageRole.USER, "明天去买菜")
    store.append("s1", MessageRole.ASSISTANT, "Please confirm", _analysis(original_input=None))

    outcome = ConfirmationResolver(store).resolve("好的", session_id="s1")

    assert outcome.is_confirmation is True
    assert outcome.original_input is None


def test_non_affirmative_is_not_a_confirmation() -> None:
    store = ConversationStore()
    _pending_session(store)

    outcome = ConfirmationResolver(store).resolve("把报告改到周五", session_id="s1")

    assert outcome.is_confirmation is False
    assert outcome.original_input is None


def test_resolver_shares_the_store_complex_policy() -> None:
    policy = ComplexInputPolicy(action_verbs=("fill", "submit"), time_pattern=r"before", min_length=10)
    store = ConversationStore(complex_policy=policy)
    store.append("s1", MessageRole.USER, "fill in and submit the form before friday")
    store.append("s1", MessageRole.ASSISTANT, "Please confirm", _analysis(original_input=None))
    resolver = ConfirmationResolver(store, policy=ConfirmationPolicy(keywords=("go",)))

    assert resolver.complex_policy is policy
    assert resolver.resolve("yes", session_id="s1").is_confirmation is False
    outcome = resolver.resolve("go", session_id="s1")
    assert outcome.original_input == "fill in and submit the form before friday"
