"""
Result sinks.

A sink receives the run header once, then either the per-step ratios of a
single run or the outcome of every ensemble repetition followed by each
finalized sweep value. record_repetition is called while the sweep value's
lock is held, so it may append to a per-sweep-value stream without further
locking.
"""
import logging
import os

import pandas as pd

from .strategy import available_strategies

OVER = "OVER"


class ResultSink:
    """Base sink; every hook is optional."""

    def begin(self, config, topology):
        pass

    def record_step(self, step, ratios):
        pass

    def record_repetition(self, point, repetition, outcome):
        pass

    def publish(self, point):
        pass

    def close(self):
        pass


class MemoryResultSink(ResultSink):
    """Keeps everything in memory; used by tests and library callers."""

    def __init__(self):
        self.config = None
        self.topology = None
        self.trajectory = []
        self.repetitions = {}
        self.points = []
        self.closed = False

    def begin(self, config, topology):
        self.config = config
        self.topology = topology

    def record_step(self, step, ratios):
        self.trajectory.append((step, ratios))

    def record_repetition(self, point, repetition, outcome):
        self.repetitions.setdefault(point.index, []).append((repetition, outcome))

    def publish(self, point):
        self.points.append(point)

    def close(self):
        self.closed = True


def _ratio_values(ratios, strategies):
    return [ratios[strategy] for strategy in strategies]


class CsvResultSink(ResultSink):
    """
    Writes CSV files into a results directory.

    Parameters:
    -----------
    results_dir : str
        Directory for results.csv, trajectory.csv and repetitions/
    """

    def __init__(self, results_dir):
        self.results_dir = results_dir
        self.results_path = os.path.join(results_dir, "results.csv")
        self.trajectory_path = os.path.join(results_dir, "trajectory.csv")
        self.repetitions_dir = os.path.join(results_dir, "repetitions")
        self.strategies = None
        self.repetitions_count = None
        self._trajectory = []
        self._rows_written = 0

    def begin(self, config, topology):
        os.makedirs(self.repetitions_dir, exist_ok=True)
        network = config.network
        dynamics = config.dynamics
        self.strategies = available_strategies(dynamics.with_loners)
        self.repetitions_count = dynamics.repetitions_count

        if not network.rewiring:
            rewiring = "No Rewiring"
        elif network.portion_of_links_to_rewire is not None:
            rewiring = f"Regular Rewiring,Portion of Links = {network.portion_of_links_to_rewire}"
        else:
            rewiring = f"{network.rewiring_type.value} Rewiring,p = {network.rewiring_probability}"

        header = [
            ("Network Type", network.describe()),
            ("Rewiring", rewiring),
            ("Loner Payoff", dynamics.loner_payoff if dynamics.with_loners else "Without Loners"),
            ("Number of Nodes", topology.nodes_count),
            ("Number of Links", topology.links_count),
            ("Nodes With Zero Degree", topology.zero_degree_count),
            ("Number of Repetitions", dynamics.repetitions_count),
            ("MinMCS", dynamics.min_mcs),
            ("Steps to Average Over", dynamics.steps_to_average_over),
            ("K", dynamics.k),
            ("MaxMCS", dynamics.max_mcs),
        ]
        distribution = pd.DataFrame(
            list(topology.degree_distribution().items()), columns=["Degree", "Fraction of Nodes"])

        with open(self.results_path, "w", encoding="utf-8") as f:
            f.write("#Run Info\n")
            pd.DataFrame(header).to_csv(f, index=False, header=False)
            f.write("\n#Degree Distribution\n")
            distribution.to_csv(f, index=False)
            f.write("\n#Results\n")
        logging.info(f"Writing results to {self.results_path}")

    def record_step(self, step, ratios):
        self._trajectory.append([step] + _ratio_values(ratios, self.strategies))

    def _columns(self, prefix):
        return [f"{prefix}ρ({strategy.label})" for strategy in self.strategies]

    def record_repetition(self, point, repetition, outcome):
        path = os.path.join(self.repetitions_dir, f"r_{point.index}.csv")
        if outcome.converged:
            values = _ratio_values(outcome.ratios, self.strategies)
        else:
            values = [OVER] * len(self.strategies)
        row = pd.DataFrame([[point.enhancement_factor, repetition, outcome.steps] + values],
                           columns=["r", "Repetition", "MCS"] + self._columns(""))
        row.to_csv(path, mode="a", index=False, header=not os.path.exists(path))

    def publish(self, point):
        columns = ["r"]
        values = [point.enhancement_factor]
        for repetition, outcome in enumerate(point.outcomes):
            columns += self._columns(f"Rep {repetition + 1}: ")
            if outcome.converged:
                values += _ratio_values(outcome.ratios, self.strategies)
            else:
                values += [OVER] * len(self.strategies)
        columns += self._columns("Mean ")
        if point.means is None:
            values += [OVER] * len(self.strategies)
        else:
            values += _ratio_values(point.means, self.strategies)

        pd.DataFrame([values], columns=columns).to_csv(
            self.results_path, mode="a", index=False, header=self._rows_written == 0)
        self._rows_written += 1

    def close(self):
        if self._trajectory:
            columns = ["MCS"] + self._columns("")
            pd.DataFrame(self._trajectory, columns=columns).to_csv(self.trajectory_path, index=False)
            logging.info(f"Trajectory of {len(self._trajectory)} steps saved to {self.trajectory_path}")
