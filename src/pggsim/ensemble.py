"""
Enhancement factor sweep with concurrent ensemble repetitions.

Every sweep value gets a fixed number of independent repetitions, each with
its own random stream and population on the shared frozen topology. The
repetitions of all sweep values run on one bounded worker pool; each sweep
value collects its outcomes under its own lock and is finalized behind its
own join barrier, so the means never depend on completion order.
"""
import functools
import logging
import os
import threading
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor

import numpy as np
from tqdm import tqdm

from .monte_carlo import StrategyRatios, simulate_repetition

# Frozen world of a worker process, set once by the pool initializer
_worker_world = None


def _init_worker(topology, groups, dynamics):
    global _worker_world
    _worker_world = (topology, groups, dynamics)


def _simulate_in_worker(enhancement_factor, seed_sequence, repetition):
    topology, groups, dynamics = _worker_world
    return simulate_repetition(topology, groups, dynamics, enhancement_factor, seed_sequence, repetition)


def enhancement_factor_sweep(dynamics):
    """
    Sweep values from the start to the max enhancement factor, both inclusive.

    Inside the minor tick interval (bounds inclusive) the fine tick applies,
    elsewhere the coarse one. Values are rounded after every tick so
    accumulated float error cannot add or drop a value.

    Parameters:
    -----------
    dynamics : DynamicsConfig
        Dynamics section of the configuration

    Returns:
    --------
    list : Enhancement factors in sweep order
    """
    if not dynamics.enhancement_range:
        return [dynamics.enhancement_factor]

    low, high = dynamics.minor_enhancement_factor_tick_interval
    values = []
    value = dynamics.enhancement_factor
    while value <= dynamics.max_enhancement_factor:
        values.append(value)
        if low <= value <= high:
            value = round(value + dynamics.minor_enhancement_factor_tick, 10)
        else:
            value = round(value + dynamics.enhancement_factor_tick, 10)
    return values


class SweepPoint:
    """
    Outcomes of all repetitions of one sweep value.

    Outcomes are stored by repetition index. The lock guards the outcomes and
    any output stream written for this sweep value; wait() is the join
    barrier that returns once every repetition has reported.
    """

    def __init__(self, index, enhancement_factor, repetitions):
        self.index = index
        self.enhancement_factor = enhancement_factor
        self.repetitions = repetitions
        self.outcomes = [None] * repetitions
        self.means = None
        self.lock = threading.Lock()
        self._done = threading.Condition(self.lock)
        self._finished = 0
        self._error = None

    @property
    def complete(self):
        return self._finished == self.repetitions

    @property
    def not_converged_count(self):
        return sum(1 for outcome in self.outcomes if outcome is not None and not outcome.converged)

    def add_outcome(self, repetition, outcome, stream=None):
        with self.lock:
            if self.outcomes[repetition] is not None:
                raise ValueError(f"repetition {repetition} of r = {self.enhancement_factor} reported twice")
            self.outcomes[repetition] = outcome
            self._finished += 1
            if stream is not None:
                stream(self, repetition, outcome)
            if self.complete:
                self._done.notify_all()

    def fail(self, error):
        with self.lock:
            self._error = error
            self._done.notify_all()

    def wait(self):
        with self._done:
            while not self.complete and self._error is None:
                self._done.wait()
            if self._error is not None:
                raise self._error

    def finalize(self):
        """Mean of each ratio over the converged repetitions only."""
        converged = [outcome.ratios for outcome in self.outcomes if outcome.converged]
        if converged:
            self.means = StrategyRatios(*np.mean(np.asarray(converged, dtype=float), axis=0).tolist())
        else:
            self.means = None
        return self.means


class EnsembleOrchestrator:
    """
    Runs the repetitions of every sweep value on a bounded worker pool.

    Parameters:
    -----------
    topology : Topology
        Frozen network shared by every repetition
    groups : GroupStructure
        Groups of the topology
    dynamics : DynamicsConfig
        Dynamics section of the configuration
    sink : ResultSink
        Receives every repetition outcome and every finalized sweep value
    seed_sequence : numpy.random.SeedSequence, optional
        Root of the per-repetition random streams
    parallel : str
        'process' or 'thread'
    max_workers : int, optional
        Pool size; defaults to the CPU count capped by the number of tasks
    """

    def __init__(self, topology, groups, dynamics, sink, seed_sequence=None,
                 parallel="process", max_workers=None):
        if parallel not in ("process", "thread"):
            raise ValueError(f"parallel must be 'process' or 'thread', got {parallel!r}")
        self.topology = topology
        self.groups = groups
        self.dynamics = dynamics
        self.sink = sink
        self.seed_sequence = seed_sequence if seed_sequence is not None else np.random.SeedSequence()
        self.parallel = parallel
        self.max_workers = max_workers

    def _collect(self, point, repetition, progress, future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logging.error(f"Repetition {repetition} of r = {point.enhancement_factor} failed: {error}")
            point.fail(error)
            return
        try:
            point.add_outcome(repetition, future.result(), stream=self.sink.record_repetition)
        except Exception as e:
            # callbacks run on pool threads; hand the failure to the barrier
            logging.error(f"Recording repetition {repetition} of r = {point.enhancement_factor} failed: {e}")
            point.fail(e)
            return
        progress.update(1)

    def run(self):
        """
        Run the whole sweep.

        Returns:
        --------
        list : Finalized SweepPoint objects in sweep order
        """
        values = enhancement_factor_sweep(self.dynamics)
        repetitions = self.dynamics.repetitions_count
        points = [SweepPoint(index, value, repetitions) for index, value in enumerate(values)]
        logging.info(f"Sweeping {len(points)} enhancement factors: {values}")

        total = len(points) * repetitions
        max_workers = self.max_workers or min(os.cpu_count() or 1, total)
        executor_cls = ProcessPoolExecutor if self.parallel == "process" else ThreadPoolExecutor
        logging.info(f"Using {executor_cls.__name__} with {max_workers} workers for {total} repetitions")

        point_seeds = self.seed_sequence.spawn(len(points))
        with tqdm(total=total, desc="Running repetitions") as progress:
            if self.parallel == "process":
                # workers receive the shared world once instead of with every task
                executor = executor_cls(max_workers=max_workers, initializer=_init_worker,
                                        initargs=(self.topology, self.groups, self.dynamics))
                task = _simulate_in_worker
            else:
                executor = executor_cls(max_workers=max_workers)
                task = functools.partial(simulate_repetition, self.topology, self.groups, self.dynamics)
            try:
                for point, point_seed in zip(points, point_seeds):
                    for repetition, seed in enumerate(point_seed.spawn(repetitions)):
                        future = executor.submit(task, point.enhancement_factor, seed, repetition)
                        future.add_done_callback(functools.partial(self._collect, point, repetition, progress))

                for point in points:
                    point.wait()
                    means = point.finalize()
                    if means is None:
                        logging.warning(f"r = {point.enhancement_factor}: no repetition converged")
                    else:
                        logging.info(f"r = {point.enhancement_factor}: D = {means.defectors:.4f}, "
                                     f"C = {means.cooperators:.4f}, L = {means.loners:.4f} "
                                     f"({point.not_converged_count} of {repetitions} did not converge)")
                    self.sink.publish(point)
            except BaseException:
                executor.shutdown(wait=False, cancel_futures=True)
                raise
            executor.shutdown(wait=True)
        return points
