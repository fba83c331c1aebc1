"""
Monte Carlo dynamics of the networked Public Goods Game.

One trial owns a Population (strategies plus the global and per-group
strategy counts) and updates it by elementary imitation steps: a random
linked node picks a random neighbor and copies its strategy with the Fermi
probability of their payoff difference. N elementary steps make one Monte
Carlo step (MCS).

Two stop policies exist. A single run records the full ratio trajectory and
stops once the ratios are stationary over a window of steps. An ensemble
repetition additionally stops in an absorbing state and gives up after
MaxMCS steps, reporting the did-not-converge sentinel.
"""
import logging
from collections import deque
from dataclasses import dataclass
from typing import List, NamedTuple, Optional

import numpy as np

from .strategy import Strategy, available_strategies, fermi_probability


class StrategyRatios(NamedTuple):
    defectors: float
    cooperators: float
    loners: float = 0.0


@dataclass(frozen=True)
class TrialOutcome:
    """
    Result of one ensemble repetition.

    A repetition that hits MaxMCS carries no ratios; that is the
    did-not-converge sentinel.
    """
    steps: int
    ratios: Optional[StrategyRatios] = None

    @property
    def converged(self):
        return self.ratios is not None

    @classmethod
    def did_not_converge(cls, steps):
        return cls(steps=steps, ratios=None)


@dataclass
class SingleRunResult:
    trajectory: List[StrategyRatios]
    steps: int
    converged: bool


def window_std(values):
    """Population standard deviation (divides by the window size)."""
    return float(np.std(np.asarray(values, dtype=float)))


#######################################################################
# Population
#######################################################################
class Population:
    """
    Strategies of one trial and the counts derived from them.

    Zero-degree nodes take no part in the game and hold None instead of a
    strategy. The global counts and the per-group cooperator and loner counts
    always equal a fresh tally of the strategy list.
    """

    def __init__(self, topology, groups, with_loners, strategies):
        strategies = [None if s is None else Strategy(s) for s in strategies]
        if len(strategies) != topology.nodes_count:
            raise ValueError(f"expected {topology.nodes_count} strategies, got {len(strategies)}")
        for node, strategy in enumerate(strategies):
            if (strategy is None) != (topology.degrees[node] == 0):
                raise ValueError(f"node {node}: linked nodes need a strategy, isolated nodes none")
            if strategy is Strategy.LONER and not with_loners:
                raise ValueError(f"node {node}: loners are disabled")
        self.groups = groups
        self.with_loners = with_loners
        self.active_count = len(topology.active_nodes)
        self.strategies = strategies
        self.recount()

    @classmethod
    def random(cls, topology, groups, with_loners, rng):
        """Every linked node draws its strategy uniformly."""
        choices = available_strategies(with_loners)
        draws = rng.integers(len(choices), size=topology.nodes_count).tolist()
        strategies = [choices[draw] if degree else None
                      for draw, degree in zip(draws, topology.degrees)]
        return cls(topology, groups, with_loners, strategies)

    @classmethod
    def uniform(cls, topology, groups, with_loners, strategy):
        strategies = [strategy if degree else None for degree in topology.degrees]
        return cls(topology, groups, with_loners, strategies)

    def recount(self):
        """Rebuild every count with one scan of the strategies."""
        self.counts = {strategy: 0 for strategy in Strategy}
        self.cooperators_per_group = [0] * self.groups.groups_count
        self.loners_per_group = [0] * self.groups.groups_count
        for node, strategy in enumerate(self.strategies):
            if strategy is not None:
                self._count(node, strategy, +1)

    def _count(self, node, strategy, adjustment):
        self.counts[strategy] += adjustment
        if strategy is Strategy.COOPERATOR:
            per_group = self.cooperators_per_group
        elif strategy is Strategy.LONER:
            per_group = self.loners_per_group
        else:
            return
        for group in self.groups.memberships[node]:
            per_group[group] += adjustment

    def switch(self, node, strategy):
        """Change a node's strategy: leave its groups as the old one, join as the new one."""
        old = self.strategies[node]
        self.strategies[node] = strategy
        self._count(node, old, -1)
        self._count(node, strategy, +1)

    def active_size(self, group):
        if self.with_loners:
            return self.groups.sizes[group] - self.loners_per_group[group]
        return self.groups.sizes[group]

    def ratios(self):
        active = self.active_count
        return StrategyRatios(
            defectors=self.counts[Strategy.DEFECTOR] / active,
            cooperators=self.counts[Strategy.COOPERATOR] / active,
            loners=self.counts[Strategy.LONER] / active,
        )

    def is_absorbing(self):
        """Two of the three strategies died out (without loners: C or D did)."""
        cooperators = self.counts[Strategy.COOPERATOR]
        if not self.with_loners:
            return cooperators == 0 or cooperators == self.active_count
        return sum(1 for count in self.counts.values() if count == 0) >= 2


#######################################################################
# Convergence monitor
#######################################################################
class ConvergenceMonitor:
    """Sliding window of ratios; stationary when every tracked series is flat."""

    def __init__(self, window, threshold, with_loners):
        self.window = window
        self.threshold = threshold
        self.with_loners = with_loners
        tracked = 3 if with_loners else 2
        self._series = [deque(maxlen=window) for _ in range(tracked)]

    def push(self, ratios):
        for series, value in zip(self._series, ratios):
            series.append(value)

    def clear(self):
        for series in self._series:
            series.clear()

    @property
    def is_full(self):
        return len(self._series[0]) == self.window

    def deviations(self):
        return [window_std(series) for series in self._series]

    def is_stationary(self):
        return all(std <= self.threshold for std in self.deviations())

    def means(self):
        values = [float(np.mean(series)) for series in self._series]
        return StrategyRatios(*values)


#######################################################################
# Engine
#######################################################################
class MonteCarloEngine:
    """
    Runs one trial on a frozen topology.

    Parameters:
    -----------
    topology : Topology
        Frozen network, shared read-only
    groups : GroupStructure
        Groups derived from the topology, shared read-only
    dynamics : DynamicsConfig
        Payoff, noise and stop policy parameters
    enhancement_factor : float
        Multiplier r of the group pools
    rng : numpy.random.Generator
        Private random stream of this trial
    population : Population, optional
        Initial state; a uniformly random one is drawn when omitted
    """

    def __init__(self, topology, groups, dynamics, enhancement_factor, rng, population=None):
        if not topology.active_nodes:
            raise ValueError("The network has no links; no node can play")
        self.topology = topology
        self.groups = groups
        self.dynamics = dynamics
        self.enhancement_factor = enhancement_factor
        self.rng = rng
        if population is None:
            population = Population.random(topology, groups, dynamics.with_loners, rng)
        self.population = population
        self.strategy_changes = 0

    def group_share(self, group):
        """Payoff each member receives from the group pool."""
        population = self.population
        return (self.enhancement_factor * population.cooperators_per_group[group]
                * self.dynamics.contribution_cost / population.active_size(group))

    def payoff(self, node, strategy):
        """
        Total payoff of a node playing the given strategy in all its groups.

        A loner earns the loner payoff once per group. Anyone else earns the
        pool share of each group; a group where the node is the only active
        member pays the loner payoff instead, and a cooperator does not
        contribute to such an empty game.
        """
        dynamics = self.dynamics
        memberships = self.groups.memberships[node]
        if strategy is Strategy.LONER:
            return len(memberships) * dynamics.loner_payoff

        total = 0.0
        games_played = len(memberships)
        for group in memberships:
            if self.population.active_size(group) == 1:
                total += dynamics.loner_payoff
                if strategy is Strategy.COOPERATOR:
                    games_played -= 1
            else:
                total += self.group_share(group)

        if strategy is Strategy.COOPERATOR:
            total -= dynamics.contribution_cost * games_played
        return total

    def elementary_step(self, node, neighbor, draw):
        """Let node imitate neighbor if the uniform draw falls under the Fermi probability."""
        strategies = self.population.strategies
        node_strategy = strategies[node]
        neighbor_strategy = strategies[neighbor]
        if node_strategy is neighbor_strategy:
            return False

        probability = fermi_probability(self.payoff(node, node_strategy),
                                        self.payoff(neighbor, neighbor_strategy),
                                        self.dynamics.k)
        if draw < probability:
            self.population.switch(node, neighbor_strategy)
            self.strategy_changes += 1
            return True
        return False

    def monte_carlo_step(self):
        """N elementary steps; returns how many nodes changed strategy."""
        nodes_count = self.topology.nodes_count
        active = self.topology.active_nodes
        links = self.topology.links
        picks = self.rng.integers(len(active), size=nodes_count).tolist()
        neighbor_draws = self.rng.random(nodes_count).tolist()
        adoption_draws = self.rng.random(nodes_count).tolist()

        changes = 0
        for pick, neighbor_draw, adoption_draw in zip(picks, neighbor_draws, adoption_draws):
            node = active[pick]
            neighbors = links[node]
            neighbor = neighbors[int(neighbor_draw * len(neighbors))]
            changes += self.elementary_step(node, neighbor, adoption_draw)
        return changes

    def _monitor(self):
        dynamics = self.dynamics
        return ConvergenceMonitor(dynamics.steps_to_average_over,
                                  dynamics.standard_deviation_value,
                                  dynamics.with_loners)

    def run_single(self, on_step=None):
        """
        Run until the ratios are stationary, recording every step.

        The initial state is step 1. After MinMCS steps the ratios of the last
        StepsToAverageOver steps are checked; if any of them still fluctuates
        more than the threshold, the floor moves one window further. MaxMCS
        bounds the run.

        Parameters:
        -----------
        on_step : callable, optional
            Called as on_step(step, ratios) for every recorded step

        Returns:
        --------
        SingleRunResult : Trajectory, last step and whether it converged
        """
        dynamics = self.dynamics
        monitor = self._monitor()
        minimum = dynamics.min_mcs

        ratios = self.population.ratios()
        trajectory = [ratios]
        if on_step:
            on_step(1, ratios)
        logging.info(f"Single run with r = {self.enhancement_factor}: step 1, {_format_ratios(ratios)}")

        step = 1
        converged = False
        while True:
            if step - 1 >= dynamics.max_mcs:
                logging.warning(f"Single run stopped at MaxMCS = {dynamics.max_mcs} without converging")
                break
            step += 1
            self.monte_carlo_step()
            ratios = self.population.ratios()
            trajectory.append(ratios)
            if on_step:
                on_step(step, ratios)
            if step % 1000 == 0:
                logging.info(f"Step {step}: {_format_ratios(ratios)}")

            if step > minimum:
                monitor.push(ratios)
            if step >= minimum + monitor.window and monitor.is_full:
                if monitor.is_stationary():
                    converged = True
                    break
                minimum = step
                monitor.clear()

        logging.info(f"Single run finished at step {step}: {_format_ratios(ratios)}")
        return SingleRunResult(trajectory=trajectory, steps=step, converged=converged)

    def run_repetition(self):
        """
        Run one ensemble repetition.

        Stops in an absorbing state (reporting the current ratios), when the
        window test passes (reporting the window means), or after MaxMCS
        steps (reporting the did-not-converge sentinel).
        """
        dynamics = self.dynamics
        monitor = self._monitor()
        minimum = dynamics.min_mcs

        for step in range(dynamics.max_mcs):
            self.monte_carlo_step()
            ratios = self.population.ratios()

            if self.population.is_absorbing():
                return TrialOutcome(steps=step + 1, ratios=ratios)

            if step > minimum:
                monitor.push(ratios)
            if step >= minimum + monitor.window and monitor.is_full:
                if monitor.is_stationary():
                    return TrialOutcome(steps=step + 1, ratios=monitor.means())
                minimum = step
                monitor.clear()

        return TrialOutcome.did_not_converge(dynamics.max_mcs)


def _format_ratios(ratios):
    return f"D = {ratios.defectors:.4f}, C = {ratios.cooperators:.4f}, L = {ratios.loners:.4f}"


def simulate_repetition(topology, groups, dynamics, enhancement_factor, seed_sequence, repetition=0):
    """
    Run one repetition with its own random stream.

    Top-level so that process pools can pickle it.

    Returns:
    --------
    TrialOutcome : Outcome of the repetition
    """
    rng = np.random.default_rng(seed_sequence)
    engine = MonteCarloEngine(topology, groups, dynamics, enhancement_factor, rng)
    outcome = engine.run_repetition()
    if outcome.converged:
        logging.debug(f"{repetition}: {outcome.steps}\t{enhancement_factor}\t{_format_ratios(outcome.ratios)}")
    else:
        logging.debug(f"{repetition}: r = {enhancement_factor} did not converge within {outcome.steps} MCS")
    return outcome
