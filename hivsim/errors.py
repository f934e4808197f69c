"""Exceptions raised by the simulator."""


class SimulationError(Exception):
    """Base class for every fatal simulation error."""


class ConfigurationError(SimulationError, ValueError):
    """Invalid parameters or an unusable output location.

    Always raised before the first tick, so no partial run exists.
    """


class GenerationExhaustedError(SimulationError):
    """The patient generator could not supply enough unique ids."""


class CapacityError(SimulationError):
    """More eligible patients were required than the pool holds."""
