"""Synthetic care trajectories for an HIV treatment programme."""

from hivsim.businessdays import BusinessCalendar
from hivsim.errors import (
    CapacityError,
    ConfigurationError,
    GenerationExhaustedError,
    SimulationError,
)
from hivsim.parameters import NormalProcess, SimulationParameters, default_parameters
from hivsim.patients import ViralLoad
from hivsim.simulation import (
    add_new_patients,
    run_simulation,
    simulate,
    simulation_tick,
    update_dead,
    update_due,
    update_ltfu,
    update_weekly,
    write_output,
)
from hivsim.state import SimulationState

__version__ = "0.1.0"
