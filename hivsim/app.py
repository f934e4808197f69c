"""
=============================================================================
  HIV Care Simulation: Web Interface (Flask + Socket.IO)
=============================================================================
  Runs the same care-trajectory simulation but streams monthly indicators
  of the first replication, and a summary per replication, to a browser
  dashboard via WebSockets.
=============================================================================
"""

import logging
import threading
from dataclasses import asdict

from flask import Flask, render_template
from flask_socketio import SocketIO, emit

from hivsim.errors import SimulationError
from hivsim.parameters import DEFAULT_PARAMS, default_parameters
from hivsim.report import ci95, run_replication

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["SECRET_KEY"] = "hiv-sim-secret"
socketio = SocketIO(app, cors_allowed_origins="*", async_mode="threading")

# ─── Global state ───
simulation_thread = None
sim_running = False

SUMMARY_KEYS = ["ever_admitted", "active_at_end", "total_visits", "total_new_patients",
                "total_ltfu", "total_deaths", "suppression_rate", "avg_visits_per_month"]


def parse_params(data):
    """Dashboard form values -> (parameters, number of replications)."""
    params = default_parameters(
        start_date=data.get("start_date", DEFAULT_PARAMS["start_date"]),
        end_date=data.get("end_date", DEFAULT_PARAMS["end_date"]),
        seed=int(data.get("seed", DEFAULT_PARAMS["seed"])),
        starting_pool_size=int(data.get("starting_pool_size", DEFAULT_PARAMS["starting_pool_size"])),
        m_visits_per_day=float(data.get("m_visits_per_day", DEFAULT_PARAMS["m_visits_per_day"])),
        sd_visits_per_day=float(data.get("sd_visits_per_day", DEFAULT_PARAMS["sd_visits_per_day"])),
        m_new_patients_per_day=float(data.get("m_new_patients_per_day",
                                              DEFAULT_PARAMS["m_new_patients_per_day"])),
        m_ltfu_per_week=float(data.get("m_ltfu_per_week", DEFAULT_PARAMS["m_ltfu_per_week"])),
        p_suppressed=float(data.get("p_suppressed", DEFAULT_PARAMS["p_suppressed"])),
        output_directory=data.get("output_directory", DEFAULT_PARAMS["output_directory"]),
    )
    return params, int(data.get("num_replications", 5))


def summarise(all_stats):
    summary = {}
    for k in SUMMARY_KEYS:
        mean, lo, hi = ci95([getattr(s, k) for s in all_stats])
        summary[k] = {"mean": round(mean, 2), "lo": round(lo, 2), "hi": round(hi, 2)}
    return summary


# =============================================================================
# SIMULATION RUNNER (background thread)
# =============================================================================
def run_simulation(params, num_reps):
    global sim_running
    sim_running = True
    all_stats = []

    socketio.emit("sim_started", {"num_reps": num_reps, "start": str(params.start_date),
                                  "end": str(params.end_date)})

    def live_month(state, record):
        """Stream each closed month of the live replication."""
        if not sim_running:
            state.stop_requested = True
            return
        socketio.emit("month_complete", {"date": str(state.current_date), **record})
        socketio.sleep(0)

    for rep in range(1, num_reps + 1):
        if not sim_running:
            break

        emit_live = (rep == 1)  # stream live view for first replication
        if emit_live:
            socketio.emit("live_rep_start", {"rep": rep})

        try:
            stats, _ = run_replication(params, rep, on_month_end=live_month if emit_live else None)
        except SimulationError as exc:
            logger.error("Replication %d failed: %s", rep, exc)
            socketio.emit("error", {"msg": str(exc)})
            break

        if not sim_running:
            break

        all_stats.append(stats)
        socketio.emit("rep_complete", {
            "rep": rep,
            "total": num_reps,
            "stats": asdict(stats),
            "progress": round(rep / num_reps * 100, 1),
        })
        socketio.sleep(0)

    if sim_running and all_stats:
        socketio.emit("sim_complete", {
            "summary": summarise(all_stats),
            "all_reps": [asdict(s) for s in all_stats],
        })
    elif not all_stats:
        socketio.emit("sim_stopped", {})

    sim_running = False


# =============================================================================
# ROUTES
# =============================================================================
@app.route("/")
def index():
    return render_template("index.html", defaults=DEFAULT_PARAMS)


@socketio.on("start_simulation")
def handle_start(data):
    global simulation_thread, sim_running
    if sim_running:
        emit("error", {"msg": "Simulation already running."})
        return

    try:
        params, num_reps = parse_params(data or {})
    except (SimulationError, ValueError) as exc:
        emit("error", {"msg": str(exc)})
        return

    simulation_thread = threading.Thread(target=run_simulation, args=(params, num_reps), daemon=True)
    simulation_thread.start()


@socketio.on("stop_simulation")
def handle_stop():
    global sim_running
    sim_running = False


# =============================================================================
# ENTRY POINT
# =============================================================================
if __name__ == "__main__":
    socketio.run(app, host="127.0.0.1", port=5000, debug=False, allow_unsafe_werkzeug=True)
