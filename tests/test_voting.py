"""Tally ordering and tie-break rules."""
from datetime import timedelta

from odyssey.game.state import VoteWindow
from odyssey.game.voting import tally_votes, voters_for_option

from conftest import T0


def _window(options, ballots=None, first=None):
    return VoteWindow(
        id="vote:OP-000001:1",
        phase="FLIGHT",
        options=options,
        opened_at=T0,
        ends_at=T0 + timedelta(seconds=60),
        ballots=ballots or {},
        option_first_vote_at=first or {},
    )


def test_empty_window_has_no_winner():
    tally = tally_votes(_window(["a", "b"]))
    assert tally.total == 0
    assert tally.per_option == {"a": 0, "b": 0}
    assert tally.winner is None
    assert tally.ranking == ["a", "b"]


def test_most_votes_wins():
    window = _window(
        ["a", "b"],
        ballots={"u1": "b", "u2": "b", "u3": "a"},
        first={"a": T0, "b": T0 + timedelta(seconds=5)},
    )
    tally = tally_votes(window)
    assert tally.total == 3
    assert tally.per_option == {"a": 1, "b": 2}
    assert tally.winner == "b"
    assert tally.ranking == ["b", "a"]


def test_tie_goes_to_earliest_first_vote():
    window = _window(
        ["a", "b"],
        ballots={"u1": "a", "u2": "b"},
        first={"b": T0 + timedelta(seconds=1), "a": T0 + timedelta(seconds=2)},
    )
    assert tally_votes(window).winner == "b"


def test_option_without_votes_never_wins_a_tie():
    window = _window(
        ["a", "b", "c"],
        ballots={"u1": "c"},
        first={"c": T0 + timedelta(seconds=9)},
    )
    tally = tally_votes(window)
    assert tally.winner == "c"
    assert tally.ranking[0] == "c"


def test_tally_is_deterministic_regardless_of_ballot_order():
    first = {"a": T0, "b": T0}
    w1 = _window(["a", "b"], ballots={"u1": "a", "u2": "b"}, first=first)
    w2 = _window(["a", "b"], ballots={"u2": "b", "u1": "a"}, first=first)
    assert tally_votes(w1) == tally_votes(w2)
    # Identical timestamps fall back to the window's option order
    assert tally_votes(w1).winner == "a"


def test_ballots_for_unknown_options_are_ignored():
    window = _window(["a"], ballots={"u1": "zzz", "u2": "a"}, first={"a": T0})
    tally = tally_votes(window)
    assert tally.total == 1
    assert tally.per_option == {"a": 1}


def test_voters_for_option_sorted():
    window = _window(["a", "b"], ballots={"zed": "a", "amy": "a", "bob": "b"})
    assert voters_for_option(window, "a") == ["amy", "zed"]
    assert voters_for_option(window, "b") == ["bob"]
    assert voters_for_option(window, "c") == []
