"""Vote tally engine.

Pure functions over a :class:`VoteWindow`.  Ranking is by vote count
(descending), ties broken by the earliest first vote for each option.
Options nobody voted for sort with a far-future timestamp, so they never
win a tie against an option with at least one vote.  Equal timestamps
keep the window's option order, which makes the result independent of
how the ballots dict happens to iterate.
"""
from odyssey.game.clock import FAR_FUTURE
from odyssey.game.state import Tally, VoteWindow


def tally_votes(window: VoteWindow) -> Tally:
    per_option: dict[str, int] = {option: 0 for option in window.options}

    # One current ballot per voter
    for option in window.ballots.values():
        if option in per_option:
            per_option[option] += 1

    total = sum(per_option.values())

    ranking = sorted(
        window.options,
        key=lambda o: (-per_option[o], window.option_first_vote_at.get(o, FAR_FUTURE)),
    )

    winner = ranking[0] if ranking and total > 0 else None
    return Tally(total=total, per_option=per_option, ranking=ranking, winner=winner)


def voters_for_option(window: VoteWindow, option_id: str) -> list[str]:
    """Return every voter whose current ballot is *option_id*."""
    return sorted(user for user, choice in window.ballots.items() if choice == option_id)
