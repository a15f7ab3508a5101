import calendar
from decimal import Decimal, ROUND_HALF_UP

# --- ENGINE RULE CONFIGURATION ---
# Rules are resolved per employee with the hierarchy:
# default_rules -> department_rules -> employee_overrides.
# calendar module constants (0=Monday, 6=Sunday)
ENGINE_CONFIGS = {
    "default_rules": {
        "standard_shift_hours": 8,
        "gap_min_minutes": 1,                # Gaps shorter than this are not reported
        "late_entry_grace_minutes": 2,       # Late arrival under this is not a gap
        "max_gap_hours": 5,                  # Longer holes between slices are split shifts, not gaps
        "deviation_tolerance_minutes": 15,   # Boundary drift allowed before a deviation is recorded
        "short_day_tolerance_minutes": 3,    # A day this far under the standard shift is incomplete
        "max_pairing_hours": 20,             # An exit further than this from its entry is not paired
        "max_special_task_hours": 9,
        "weekend_days": [calendar.SATURDAY, calendar.SUNDAY],
        "festive_weekdays": [calendar.SUNDAY],
        "holiday_analysis_start": "06:00",
    },
    "department_rules": {
        # "Logistics": {"deviation_tolerance_minutes": 10},
    },
    "employee_overrides": {
        # "1042": {"weekend_days": [calendar.SUNDAY]},
    },
}
# --- END ENGINE RULE CONFIGURATION ---

# --- SHIFT DEFINITIONS ---
# Canonical shift windows. TN/T is the afternoon shift, N crosses midnight.
SHIFT_SPECS = {
    "M": {"start": "07:00", "end": "15:00", "label": "Morning"},
    "TN": {"start": "15:00", "end": "23:00", "label": "Afternoon"},
    "T": {"start": "15:00", "end": "23:00", "label": "Afternoon"},
    "N": {"start": "23:00", "end": "07:00", "label": "Night"},
    "C": {"start": "08:00", "end": "17:00", "label": "Central"},
}
# Day-off codes that carry no working window
VIRTUAL_SHIFT_CODES = {"V", "L", "F"}
DEFAULT_SHIFT = "M"
# --- END SHIFT DEFINITIONS ---

# --- MOTIVE CODES ---
MOTIVE_CLOCK_IN = 0
MOTIVE_CLOCK_OUT = 1
SPECIAL_TASK_MOTIVE = 14
SPECIAL_TASK_TOKEN = "TAJ"
PLAIN_PUNCH_MOTIVES = {None, MOTIVE_CLOCK_IN, MOTIVE_CLOCK_OUT}

MOTIVE_CATEGORIES = {
    2: "medical",
    3: "official_duty",
    4: "personal_matters",
    5: "vacation",
    6: "specialist_accident",
    7: "free_disposal",
    8: "vacation",
    9: "union_hours",
    10: "sick_leave_work_accident",
    11: "sick_leave_common",
    13: "family_law",
    14: "special_task",
}

# Yearly allowance per category. Vacation is counted in days, the rest in hours.
ANNUAL_CREDITS = {
    "medical": 16,
    "vacation": 22,
    "free_disposal": 8,
    "family_law": 32,
}
# --- END MOTIVE CODES ---

# --- PUNCH SNAPPING WINDOWS ---
# Holiday anchors, evaluated in this order; the first matching window wins.
# The 13:00 window starts at 12:31 so that 12:30 only belongs to the 12:00 anchor.
HOLIDAY_TARGET_RANGES = [
    {"kind": "ENTRY", "target": "07:00", "min": "06:30", "max": "07:30"},
    {"kind": "EXIT", "target": "12:00", "min": "11:30", "max": "12:30"},
    {"kind": "EXIT", "target": "13:00", "min": "12:31", "max": "13:30"},
]

# Regular-day windows are one-sided: early arrivals and late departures only.
REGULAR_SNAP_RULES = {
    "M": {
        "ENTRY": {"target": "07:00", "min": "06:15", "max": "07:00", "min_inclusive": True, "max_inclusive": False},
        "EXIT": {"target": "15:00", "min": "15:00", "max": "15:15", "min_inclusive": False, "max_inclusive": True},
    },
    "TN": {
        "ENTRY": {"target": "15:00", "min": "14:15", "max": "15:00", "min_inclusive": True, "max_inclusive": False},
        "EXIT": {"target": "23:00", "min": "23:00", "max": "23:15", "min_inclusive": False, "max_inclusive": True},
    },
}

# Hour ranges (inclusive) used to guess a shift from a lone punch
SHIFT_INFERENCE_WINDOWS = {
    "ENTRY": [("M", 5, 10), ("TN", 13, 16)],
    "EXIT": [("M", 13, 16), ("TN", 21, 23)],
}
# --- END PUNCH SNAPPING WINDOWS ---

# Employees never included in reconciliation output
EXCLUDED_EMPLOYEE_IDS = set()

# --- Column Name Mapping ---
# Maps canonical event fields to the column names found in ERP exports.
# The order of the list matters: earlier names win when a row has several filled.
COLUMN_MAPPING = {
    'employee_id': ['IDOperario', 'IdOperario', 'Operario', 'No.', 'AC-No.', 'employee_id'],
    'employee_name': ['DescOperario', 'Name', 'employee_name'],
    'department': ['DescDepartamento', 'Departamento', 'department'],
    'date': ['Fecha', 'Date', 'date'],
    'time': ['Hora', 'Time', 'time', 'Date/Time'],
    'is_entry': ['Entrada', 'Status', 'State', 'is_entry'],
    'motive_code': ['MotivoAusencia', 'IDMotivo', 'motive_code'],
    'motive_desc': ['DescMotivoAusencia', 'motive_desc'],
    'day_type': ['TipoDiaEmpresa', 'day_type'],
    'shift_label': ['IDTipoTurno', 'TurnoTexto', 'shift_label'],
    'range_start': ['Inicio', 'range_start'],
    'range_end': ['Fin', 'range_end'],
    'punch_id': ['IDControlPresencia', 'punch_id'],
}
CRITICAL_COLUMNS = ['employee_id', 'date', 'time']
# --- END Column Mapping ---


def time_to_minutes(value: str) -> int:
    """Converts 'HH:MM' or 'HH:MM:SS' to minutes since midnight (seconds are truncated)."""
    hours, minutes = str(value).split(':')[:2]
    return int(hours) * 60 + int(minutes)


def minutes_to_time(total_minutes: int) -> str:
    """Formats minutes since midnight as 'HH:MM', wrapping past 24h."""
    total_minutes = int(total_minutes) % (24 * 60)
    return f"{total_minutes // 60:02}:{total_minutes % 60:02}"


def round_hours(value) -> float:
    """
    Rounds an hour figure half-up to 2 decimals.
    Accepts int/float/Decimal; floats go through str() so that 0.125 rounds to 0.13.
    """
    return float(Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def minutes_to_hours(total_minutes) -> float:
    """Converts a minute total to hours, rounding once."""
    return float((Decimal(total_minutes) / Decimal(60)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


# Function to safely merge dictionaries, with later dicts overriding earlier ones
def merge_configs(base, override):
    """
    Recursively merges two dictionaries. Values from 'override' overwrite 'base' values.
    If a key exists in both and its value is a dictionary, the dictionaries are merged.
    """
    merged = base.copy()
    if override:
        for k, v in override.items():
            if isinstance(merged.get(k), dict) and isinstance(v, dict):
                merged[k] = merge_configs(merged[k], v)
            else:
                merged[k] = v
    return merged


def get_effective_rules_for_employee(employee_id, department: str = "", configs: dict = None) -> dict:
    """
    Determines the effective reconciliation rules for an employee,
    applying hierarchy: Default -> Department -> Employee Override.

    Args:
        employee_id: The employee identifier (looked up as a string).
        department (str): The employee's department name, may be empty.
        configs (dict): Alternative rule tree, defaults to ENGINE_CONFIGS.

    Returns:
        dict: The merged rule set.
    """
    configs = configs if configs is not None else ENGINE_CONFIGS

    effective_rules = configs.get("default_rules", {}).copy()

    department_rules = configs.get("department_rules", {}).get(department or "", {})
    effective_rules = merge_configs(effective_rules, department_rules)

    employee_rules = configs.get("employee_overrides", {}).get(str(employee_id), {})
    effective_rules = merge_configs(effective_rules, employee_rules)

    return effective_rules
