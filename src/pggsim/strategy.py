"""
Strategies of the networked Public Goods Game and the Fermi imitation rule.

Strategy Explanation:
Every linked node plays one of three strategies in all of the groups it
belongs to. A Cooperator pays the contribution cost into each group pool,
a Defector joins the groups without paying, and a Loner (only when loners are
enabled) stays out of every game in exchange for a fixed payoff per group.

Nodes change strategy by imitation: a node compares its payoff with the payoff
of a random neighbor and copies the neighbor's strategy with the probability
given by the Fermi function of the payoff difference. The noise parameter K
controls how strongly the imitation follows payoffs; small K makes the update
almost deterministic, large K makes it almost a coin toss.
"""
import math
from enum import IntEnum


class Strategy(IntEnum):
    DEFECTOR = 0
    COOPERATOR = 1
    LONER = 2

    @property
    def label(self):
        return self.name[0]


def available_strategies(with_loners):
    """
    Strategies a node may start with.

    Parameters:
    -----------
    with_loners : bool
        Whether the Loner strategy takes part in the game

    Returns:
    --------
    tuple : Strategy members in code order
    """
    if with_loners:
        return (Strategy.DEFECTOR, Strategy.COOPERATOR, Strategy.LONER)
    return (Strategy.DEFECTOR, Strategy.COOPERATOR)


def fermi_probability(payoff_self, payoff_neighbor, noise):
    """
    Probability that a node adopts the strategy of its neighbor.

    Computes 1 / (1 + exp((payoff_self - payoff_neighbor) / noise)) without
    overflowing for large payoff differences.

    Parameters:
    -----------
    payoff_self : float
        Payoff of the node that may change its strategy
    payoff_neighbor : float
        Payoff of the neighbor it compares itself with
    noise : float
        Noise parameter K (> 0)

    Returns:
    --------
    float : Adoption probability in [0, 1]
    """
    x = (payoff_self - payoff_neighbor) / noise
    if x > 0:
        e = math.exp(-x)
        return e / (1.0 + e)
    return 1.0 / (1.0 + math.exp(x))
