import pytest

from roomie.session import FocusState, Session


def test_new_session_is_idle():
    session = Session()
    assert session.state is FocusState.IDLE
    assert not session.busy
    assert session.history == []
    assert session.connection_id


def test_history_never_exceeds_four_pairs():
    """len(history) == min(2N, 8) after N completed exchanges."""
    session = Session(max_history_pairs=4)
    for n in range(1, 7):
        session.record_exchange(f"q{n}", f"a{n}")
        assert len(session.history) == min(2 * n, 8)

    history = session.history
    assert [turn.role for turn in history[:2]] == ["user", "model"]
    assert history[0].text == "q3"
    assert history[-1].text == "a6"


def test_empty_reply_is_not_recorded():
    session = Session()
    assert session.record_exchange("hello", "") is False
    assert session.history == []


def test_history_property_is_a_copy():
    session = Session()
    session.record_exchange("q", "a")
    session.history.clear()
    assert len(session.history) == 2


def test_busy_flag_allows_one_stream_at_a_time():
    session = Session()
    assert session.begin_stream() is True
    assert session.begin_stream() is False
    session.end_stream()
    assert session.begin_stream() is True


def test_focus_transitions():
    session = Session()
    session.focus_item()
    assert session.focused
    assert session.state is FocusState.FOCUSED
    session.focus_item()
    assert session.focused
    session.clear_focus()
    assert session.state is FocusState.IDLE


def test_closed_session_rejects_work():
    session = Session()
    session.record_exchange("q", "a")
    session.focus_item()
    session.close()

    assert session.closed
    assert session.history == []
    assert not session.focused
    assert session.begin_stream() is False
    assert session.record_exchange("q", "a") is False


def test_negative_history_cap_is_rejected():
    with pytest.raises(ValueError):
        Session(max_history_pairs=-1)
