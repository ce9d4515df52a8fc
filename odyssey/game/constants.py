"""
Odyssey mission constants
Stat deltas, timer kinds, vote options and ledger point rules in one place.
"""

# ============================================================
# Phases
# ============================================================
PHASE_IDLE = "IDLE"
PHASE_DESIGN = "DESIGN"
PHASE_LAUNCH = "LAUNCH"
PHASE_FLIGHT = "FLIGHT"
PHASE_RESULT = "RESULT"

PHASES = (PHASE_IDLE, PHASE_DESIGN, PHASE_LAUNCH, PHASE_FLIGHT, PHASE_RESULT)

# Phases in which a vote window may be opened
VOTE_PHASES = (PHASE_DESIGN, PHASE_LAUNCH, PHASE_FLIGHT)

# ============================================================
# Outcomes
# ============================================================
OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"
OUTCOME_ABORT = "abort"

# ============================================================
# Starting conditions of a mission
# ============================================================
START_FUEL = 40
START_HULL = 100
START_CREW = 100
START_SUCCESS = 35
FUEL_MAX = 100

# Mission ids look like OP-004211
MISSION_ID_PREFIX = "OP-"

# ============================================================
# Design deltas
# ============================================================
PAYLOAD_PROBE = "Probe"
PAYLOAD_HAB = "Hab"
PAYLOAD_CARGO = "Cargo"

# payload -> {stat: delta}
PAYLOAD_EFFECTS = {
    PAYLOAD_PROBE: {"success": 2},
    PAYLOAD_HAB: {"crew": 5},
    PAYLOAD_CARGO: {"fuel": 5},
}

ENGINE_LIGHT = "Light"
ENGINE_HEAVY = "Heavy"
ENGINE_ADVANCED = "Advanced"

ENGINE_EFFECTS = {
    ENGINE_LIGHT: {"success": 5},
    ENGINE_HEAVY: {"success": 10, "crew": -2},
    ENGINE_ADVANCED: {"success": 12, "crew": 1},
}

# Fuel tank size -> fuel bonus on selection
TANK_FUEL_BONUS = {
    "S": 10,
    "M": 20,
    "L": 35,
    "XL": 50,
}

MISSION_TYPES = ("LunarOrbit", "MarsFlyby", "AsteroidSurvey")

ADD_FUEL_MAX = 100
ADD_FUEL_HULL_PENALTY = 2  # heavier load risk

# ============================================================
# Launch & flight
# ============================================================
LAUNCH_FUEL_COST = 10
LAUNCH_FAIL_SCIENCE = 2

FLIGHT_HOLD_COURSE = "HoldCourse"
FLIGHT_COURSE_CORRECTION = "CourseCorrection"
FLIGHT_RUN_EXPERIMENT = "RunExperiment"

# action -> {stat: delta}; "science" feeds science_points_delta
FLIGHT_EFFECTS = {
    FLIGHT_HOLD_COURSE: {},
    FLIGHT_COURSE_CORRECTION: {"fuel": -8, "success": 6},
    FLIGHT_RUN_EXPERIMENT: {"fuel": -4, "science": 3},
}

FLIGHT_SUCCESS_SCIENCE = 10
FLIGHT_ABORT_SCIENCE = 1

# ============================================================
# Voting
# ============================================================
VOTE_FINALIZE_DESIGN = "finalize_design"
VOTE_ADD_MORE_FUEL = "add_more_fuel"
VOTE_MANUAL_LAUNCH = "manual_launch"
VOTE_HOLD_COURSE = "hold_course"
VOTE_COURSE_CORRECTION = "course_correction"
VOTE_RUN_EXPERIMENT = "run_experiment"

# Vote option id -> flight action it stands for
VOTE_FLIGHT_ACTIONS = {
    VOTE_HOLD_COURSE: FLIGHT_HOLD_COURSE,
    VOTE_COURSE_CORRECTION: FLIGHT_COURSE_CORRECTION,
    VOTE_RUN_EXPERIMENT: FLIGHT_RUN_EXPERIMENT,
}

# ============================================================
# Timers
# ============================================================
TIMER_LAUNCH = "LAUNCH"
TIMER_BALLOT = "BALLOT"
TIMER_PHASE = "PHASE"

TIMER_KINDS = (TIMER_LAUNCH, TIMER_BALLOT, TIMER_PHASE)

TIMER_RUNNING = "running"
TIMER_PAUSED = "paused"
TIMER_ENDED = "ended"

# Timer kind -> deadline field on the mission record
TIMER_FIELDS = {
    TIMER_LAUNCH: "launch_countdown_until",
    TIMER_BALLOT: "choices_open_until",
    TIMER_PHASE: "phase_gate_until",
}

# Scheduled job actions
JOB_LAUNCH = "launch"
JOB_CLOSE_VOTE = "close_vote"
JOB_END_TIMER = "end_timer"

# ============================================================
# Ledger
# ============================================================
REASON_ACTION_DECISIVE = "ACTION_DECISIVE"
REASON_MISSION_SUCCESS = "MISSION_SUCCESS"
REASON_MISSION_FAIL = "MISSION_FAIL"
REASON_MISSION_ABORT = "MISSION_ABORT"
REASON_VOTE_PARTICIPATION = "VOTE_PARTICIPATION"

POINT_RULES = {
    REASON_ACTION_DECISIVE: 3,
    REASON_MISSION_SUCCESS: 5,
    REASON_MISSION_FAIL: 1,
    REASON_MISSION_ABORT: 1,
    REASON_VOTE_PARTICIPATION: 1,
}

OUTCOME_REASONS = {
    OUTCOME_SUCCESS: REASON_MISSION_SUCCESS,
    OUTCOME_FAIL: REASON_MISSION_FAIL,
    OUTCOME_ABORT: REASON_MISSION_ABORT,
}
