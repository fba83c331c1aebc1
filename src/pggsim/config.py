"""
Simulation configuration records and the JSON configuration loader.

The whole run is described by one SimulationConfig built from a JSON
document with a "network" and a "dynamics" section. Every field the chosen
network type and run mode need must be present; nothing is filled in
silently. Validation happens here, before any simulation work starts, and
every failure names the offending field.
"""
import json
import logging
import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional, Tuple


class ConfigError(ValueError):
    """Raised when a configuration field is missing or malformed."""


class NetworkType(Enum):
    SQUARE_LATTICE = "square_lattice"
    ERDOS_RENYI = "erdos_renyi"
    RING_GRAPH = "ring_graph"
    BARABASI_ALBERT = "barabasi_albert"
    TRIANGULAR_LATTICE = "triangular_lattice"
    HONEYCOMB = "honeycomb"

    @property
    def is_lattice(self):
        return self in (NetworkType.SQUARE_LATTICE,
                        NetworkType.TRIANGULAR_LATTICE,
                        NetworkType.HONEYCOMB)


class RewiringType(Enum):
    SQUARE_LATTICE = "square_lattice"
    RING_GRAPH = "ring_graph"
    REGULAR = "regular"


@dataclass(frozen=True)
class NetworkConfig:
    network_type: NetworkType
    nodes_count: int
    lattice_length: Optional[int] = None
    erdos_renyi_probability: Optional[float] = None
    ring_graph_degree: Optional[int] = None
    rewiring: bool = False
    rewiring_type: Optional[RewiringType] = None
    rewiring_probability: Optional[float] = None
    portion_of_links_to_rewire: Optional[float] = None
    load_network: bool = False
    network_file: Optional[str] = None

    def describe(self):
        """Human readable network description used in result headers."""
        if self.network_type is NetworkType.ERDOS_RENYI:
            return f"Erdos-Renyi,p = {self.erdos_renyi_probability}"
        if self.network_type is NetworkType.RING_GRAPH:
            return f"Ring Graph,{self.ring_graph_degree}"
        return {
            NetworkType.SQUARE_LATTICE: "Square Lattice",
            NetworkType.BARABASI_ALBERT: "Barabasi-Albert",
            NetworkType.TRIANGULAR_LATTICE: "Triangular Lattice",
            NetworkType.HONEYCOMB: "Honeycomb Network",
        }[self.network_type]


@dataclass(frozen=True)
class DynamicsConfig:
    with_loners: bool
    enhancement_range: bool
    enhancement_factor: float
    repetitions_count: int
    min_mcs: int
    max_mcs: int
    steps_to_average_over: int
    k: float
    contribution_cost: float
    loner_payoff: float
    standard_deviation_value: float
    max_enhancement_factor: Optional[float] = None
    enhancement_factor_tick: Optional[float] = None
    minor_enhancement_factor_tick_interval: Optional[Tuple[float, float]] = None
    minor_enhancement_factor_tick: Optional[float] = None
    # Extension point only, no dynamics use it.
    with_satisfaction: bool = False
    satisfaction_update_probability: Optional[float] = None


@dataclass(frozen=True)
class SimulationConfig:
    network: NetworkConfig
    dynamics: DynamicsConfig
    seed: Optional[int] = None

    def to_dict(self):
        """JSON friendly dump of the configuration (enums by value)."""
        def convert(value):
            if isinstance(value, Enum):
                return value.value
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            if isinstance(value, (list, tuple)):
                return [convert(v) for v in value]
            return value
        return convert(asdict(self))


#######################################################################
# Field readers
#######################################################################
class _Section:
    """Typed access to one section of the raw configuration mapping."""

    def __init__(self, name, raw):
        if not isinstance(raw, dict):
            raise ConfigError(f"{name}: expected an object, got {type(raw).__name__}")
        self.name = name
        self.raw = raw

    def _field(self, key):
        return f"{self.name}.{key}"

    def _get(self, key):
        if key not in self.raw or self.raw[key] is None:
            raise ConfigError(f"{self._field(key)}: missing required field")
        return self.raw[key]

    def boolean(self, key, optional=False):
        if optional and self.raw.get(key) is None:
            return False
        value = self._get(key)
        if not isinstance(value, bool):
            raise ConfigError(f"{self._field(key)}: expected true/false, got {value!r}")
        return value

    def integer(self, key, minimum=None):
        value = self._get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{self._field(key)}: expected an integer, got {value!r}")
        if minimum is not None and value < minimum:
            raise ConfigError(f"{self._field(key)}: must be >= {minimum}, got {value}")
        return value

    def number(self, key, minimum=None, maximum=None, strict_minimum=False):
        value = self._get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"{self._field(key)}: expected a number, got {value!r}")
        value = float(value)
        if not math.isfinite(value):
            raise ConfigError(f"{self._field(key)}: must be finite, got {value}")
        if minimum is not None:
            if strict_minimum and value <= minimum:
                raise ConfigError(f"{self._field(key)}: must be > {minimum}, got {value}")
            if not strict_minimum and value < minimum:
                raise ConfigError(f"{self._field(key)}: must be >= {minimum}, got {value}")
        if maximum is not None and value > maximum:
            raise ConfigError(f"{self._field(key)}: must be <= {maximum}, got {value}")
        return value

    def choice(self, key, enum_cls):
        value = self._get(key)
        try:
            return enum_cls(value)
        except ValueError:
            allowed = ", ".join(member.value for member in enum_cls)
            raise ConfigError(f"{self._field(key)}: expected one of [{allowed}], got {value!r}") from None

    def text(self, key):
        value = self._get(key)
        if not isinstance(value, str) or not value:
            raise ConfigError(f"{self._field(key)}: expected a non-empty string, got {value!r}")
        return value

    def interval(self, key):
        value = self._get(key)
        if (not isinstance(value, (list, tuple)) or len(value) != 2
                or any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in value)):
            raise ConfigError(f"{self._field(key)}: expected [low, high], got {value!r}")
        low, high = float(value[0]), float(value[1])
        if low > high:
            raise ConfigError(f"{self._field(key)}: low bound {low} is above high bound {high}")
        return (low, high)


#######################################################################
# Section parsers
#######################################################################
def _parse_network(section):
    network_type = section.choice("network_type", NetworkType)
    lattice_length = None
    erdos_renyi_probability = None
    ring_graph_degree = None

    if network_type.is_lattice:
        lattice_length = section.integer("lattice_length", minimum=3)
        if network_type is not NetworkType.SQUARE_LATTICE and (lattice_length % 2 or lattice_length < 4):
            raise ConfigError(f"network.lattice_length: {network_type.value} needs an even side >= 4, "
                              f"got {lattice_length}")
        nodes_count = lattice_length * lattice_length
    else:
        nodes_count = section.integer("nodes_count", minimum=2)

    if network_type is NetworkType.ERDOS_RENYI:
        erdos_renyi_probability = section.number("erdos_renyi_probability", minimum=0.0, maximum=1.0)
    elif network_type is NetworkType.RING_GRAPH:
        ring_graph_degree = section.integer("ring_graph_degree", minimum=2)
        if ring_graph_degree % 2:
            raise ConfigError(f"network.ring_graph_degree: must be even, got {ring_graph_degree}")
        if ring_graph_degree >= nodes_count:
            raise ConfigError(f"network.ring_graph_degree: must be below nodes_count ({nodes_count}), "
                              f"got {ring_graph_degree}")

    rewiring = section.boolean("rewiring")
    rewiring_type = None
    rewiring_probability = None
    portion_of_links_to_rewire = None
    if rewiring:
        rewiring_type = section.choice("rewiring_type", RewiringType)
        if rewiring_type is RewiringType.REGULAR:
            portion_of_links_to_rewire = section.number("portion_of_links_to_rewire", minimum=0.0, maximum=1.0)
        else:
            rewiring_probability = section.number("rewiring_probability", minimum=0.0, maximum=1.0)
        if rewiring_type is RewiringType.RING_GRAPH and network_type is not NetworkType.RING_GRAPH:
            raise ConfigError(f"network.rewiring_type: ring_graph rewiring needs a ring_graph network, "
                              f"got {network_type.value}")

    load_network = section.boolean("load_network")
    network_file = section.text("network_file") if load_network else None

    return NetworkConfig(
        network_type=network_type,
        nodes_count=nodes_count,
        lattice_length=lattice_length,
        erdos_renyi_probability=erdos_renyi_probability,
        ring_graph_degree=ring_graph_degree,
        rewiring=rewiring,
        rewiring_type=rewiring_type,
        rewiring_probability=rewiring_probability,
        portion_of_links_to_rewire=portion_of_links_to_rewire,
        load_network=load_network,
        network_file=network_file,
    )


def _parse_dynamics(section):
    with_satisfaction = section.boolean("with_satisfaction", optional=True)
    if with_satisfaction:
        raise ConfigError("dynamics.with_satisfaction: satisfaction dynamics are not implemented")
    satisfaction_update_probability = None
    if section.raw.get("satisfaction_update_probability") is not None:
        satisfaction_update_probability = section.number("satisfaction_update_probability",
                                                         minimum=0.0, maximum=1.0)

    enhancement_range = section.boolean("enhancement_range")
    enhancement_factor = section.number("enhancement_factor", minimum=0.0)
    max_enhancement_factor = None
    enhancement_factor_tick = None
    minor_interval = None
    minor_tick = None
    if enhancement_range:
        max_enhancement_factor = section.number("max_enhancement_factor", minimum=enhancement_factor)
        enhancement_factor_tick = section.number("enhancement_factor_tick", minimum=0.0, strict_minimum=True)
        minor_interval = section.interval("minor_enhancement_factor_tick_interval")
        minor_tick = section.number("minor_enhancement_factor_tick", minimum=0.0, strict_minimum=True)

    min_mcs = section.integer("min_mcs", minimum=0)
    max_mcs = section.integer("max_mcs", minimum=1)
    if max_mcs <= min_mcs:
        raise ConfigError(f"dynamics.max_mcs: must be above min_mcs ({min_mcs}), got {max_mcs}")

    return DynamicsConfig(
        with_loners=section.boolean("with_loners"),
        enhancement_range=enhancement_range,
        enhancement_factor=enhancement_factor,
        repetitions_count=section.integer("repetitions_count", minimum=1),
        min_mcs=min_mcs,
        max_mcs=max_mcs,
        steps_to_average_over=section.integer("steps_to_average_over", minimum=1),
        k=section.number("k", minimum=0.0, strict_minimum=True),
        contribution_cost=section.number("contribution_cost"),
        loner_payoff=section.number("loner_payoff"),
        standard_deviation_value=section.number("standard_deviation_value", minimum=0.0),
        max_enhancement_factor=max_enhancement_factor,
        enhancement_factor_tick=enhancement_factor_tick,
        minor_enhancement_factor_tick_interval=minor_interval,
        minor_enhancement_factor_tick=minor_tick,
        with_satisfaction=with_satisfaction,
        satisfaction_update_probability=satisfaction_update_probability,
    )


def parse_config(raw):
    """
    Build a validated SimulationConfig from a decoded JSON mapping.

    Parameters:
    -----------
    raw : dict
        Mapping with "network", "dynamics" and optionally "seed"

    Returns:
    --------
    SimulationConfig : Immutable configuration record

    Raises:
    -------
    ConfigError : If any field is missing or malformed
    """
    if not isinstance(raw, dict):
        raise ConfigError(f"config: expected an object, got {type(raw).__name__}")
    for key in ("network", "dynamics"):
        if key not in raw:
            raise ConfigError(f"{key}: missing required section")

    seed = raw.get("seed")
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int) or seed < 0):
        raise ConfigError(f"seed: expected a non-negative integer or null, got {seed!r}")

    network = _parse_network(_Section("network", raw["network"]))
    dynamics = _parse_dynamics(_Section("dynamics", raw["dynamics"]))
    return SimulationConfig(network=network, dynamics=dynamics, seed=seed)


def load_config(path):
    """Read and validate a JSON configuration file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"config file not found: {path}") from None
    except json.JSONDecodeError as e:
        raise ConfigError(f"config file {path} is not valid JSON: {e}") from None

    config = parse_config(raw)
    logging.info(f"Loaded configuration from {path}")
    return config
