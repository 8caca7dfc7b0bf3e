import json
import math
import logging
from typing import List, Dict, Any, Optional, Sequence

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

ENTITY_TYPES = ("clients", "workers", "tasks")

# --------- Schema Registry ---------
REQUIRED_COLUMNS: Dict[str, List[str]] = {
    "clients": [
        "ClientID", "ClientName", "PriorityLevel",
        "RequestedTaskIDs", "GroupTag", "AttributesJSON"
    ],
    "workers": [
        "WorkerID", "WorkerName", "Skills",
        "AvailableSlots", "MaxLoadPerPhase",
        "WorkerGroup", "QualificationLevel"
    ],
    "tasks": [
        "TaskID", "TaskName", "Category",
        "Duration", "RequiredSkills",
        "PreferredPhases", "MaxConcurrent"
    ],
}

ID_COLUMNS: Dict[str, str] = {
    "clients": "ClientID",
    "workers": "WorkerID",
    "tasks": "TaskID",
}

# (column, label used in the "<label> is required" message)
REQUIRED_FIELDS: Dict[str, List[tuple]] = {
    "clients": [("ClientID", "Client ID"), ("ClientName", "Client Name")],
    "workers": [("WorkerID", "Worker ID"), ("WorkerName", "Worker Name")],
    "tasks": [("TaskID", "Task ID"), ("TaskName", "Task Name")],
}


class UnknownEntityTypeError(ValueError):
    def __init__(self, entity_type: str):
        super().__init__(f"Unknown entity type: {entity_type!r}. Expected one of: {', '.join(ENTITY_TYPES)}")
        self.entity_type = entity_type


def ensure_entity_type(entity_type: str) -> str:
    if entity_type not in ENTITY_TYPES:
        raise UnknownEntityTypeError(entity_type)
    return entity_type


def required_columns(entity_type: str) -> List[str]:
    return list(REQUIRED_COLUMNS[ensure_entity_type(entity_type)])


# --------- Result types ---------
class CellError:
    """A defect addressable to one row and column of one entity collection."""

    def __init__(self, entity_type: str, row_index: int, column_id: str, message: str):
        self.entity_type = entity_type
        self.row_index = row_index
        self.column_id = column_id
        self.message = message

    def to_dict(self):
        return {
            "entityType": self.entity_type,
            "rowIndex": self.row_index,
            "columnId": self.column_id,
            "message": self.message,
        }

    def __eq__(self, other):
        if not isinstance(other, CellError):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"CellError({self.entity_type!r}, {self.row_index}, {self.column_id!r}, {self.message!r})"


class ValidationReport:
    def __init__(self, cell_errors: List[CellError] = None, global_errors: List[str] = None):
        self.cell_errors = list(cell_errors or [])
        self.global_errors = list(global_errors or [])

    @property
    def is_valid(self) -> bool:
        return not self.cell_errors and not self.global_errors

    def errors_for(self, entity_type: str) -> List[CellError]:
        return [err for err in self.cell_errors if err.entity_type == entity_type]

    def to_dict(self):
        return {
            "cellErrors": [err.to_dict() for err in self.cell_errors],
            "globalErrors": list(self.global_errors),
            "isValid": self.is_valid,
        }


# --------- Value helpers ---------
def _is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def _is_falsy(value: Any) -> bool:
    return value is None or _is_nan(value) or not value


def _is_present(value: Any) -> bool:
    # Blank spreadsheet cells arrive as None, NaN or "" depending on the parser
    if value is None or _is_nan(value):
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        # float() also accepts "inf", "nan" and "1_000"; spreadsheet numbers never do
        if "_" in text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _format_number(number: float):
    if isinstance(number, float) and number.is_integer():
        return int(number)
    return number


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _parse_json(value: Any) -> Any:
    """Decode a JSON cell; values already decoded by the ingest layer pass through."""
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except RecursionError:
            # Pathologically nested input is reported like any other malformed cell
            raise ValueError("JSON nesting too deep")
    return value


def _is_positive_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value > 0
    if isinstance(value, float):
        return value.is_integer() and value > 0
    return False


def _split_list(value: Any) -> List[str]:
    return [part.strip() for part in _as_text(value).split(",")]


def parse_slot_list(value: Any) -> Optional[list]:
    """Return the decoded AvailableSlots list, or None when it does not decode to a list."""
    try:
        slots = _parse_json(value)
    except ValueError:
        return None
    return slots if isinstance(slots, list) else None


# --------- Entity Validators ---------
def _required_field_errors(row: Row, index: int, entity_type: str) -> List[CellError]:
    errors = []
    for column, label in REQUIRED_FIELDS[entity_type]:
        if _is_falsy(row.get(column)):
            errors.append(CellError(entity_type, index, column, f"{label} is required"))
    return errors


def _check_min(row: Row, index: int, entity_type: str, column: str, minimum: float,
               message: str, maximum: float = None) -> List[CellError]:
    value = row.get(column)
    if not _is_present(value):
        return []
    number = _to_number(value)
    if number is None or number < minimum or (maximum is not None and number > maximum):
        return [CellError(entity_type, index, column, message)]
    return []


def validate_client_rows(clients: Sequence[Row]) -> List[CellError]:
    errors = []
    for index, client in enumerate(clients):
        errors.extend(_required_field_errors(client, index, "clients"))
        errors.extend(_check_min(
            client, index, "clients", "PriorityLevel", 1,
            "Priority Level must be between 1 and 5", maximum=5
        ))

        attributes = client.get("AttributesJSON")
        if not _is_falsy(attributes):
            try:
                _parse_json(attributes)
            except ValueError:
                errors.append(CellError("clients", index, "AttributesJSON", "Invalid JSON format"))
    return errors


def validate_worker_rows(workers: Sequence[Row]) -> List[CellError]:
    errors = []
    for index, worker in enumerate(workers):
        errors.extend(_required_field_errors(worker, index, "workers"))

        slots_raw = worker.get("AvailableSlots")
        if not _is_falsy(slots_raw):
            try:
                slots = _parse_json(slots_raw)
            except ValueError:
                errors.append(CellError(
                    "workers", index, "AvailableSlots", "AvailableSlots must be valid JSON array"
                ))
            else:
                if not isinstance(slots, list) or not all(_is_positive_int(slot) for slot in slots):
                    errors.append(CellError(
                        "workers", index, "AvailableSlots",
                        "AvailableSlots must be an array of positive integers"
                    ))

        errors.extend(_check_min(
            worker, index, "workers", "MaxLoadPerPhase", 1,
            "Max Load Per Phase must be a positive number"
        ))
    return errors


def validate_task_rows(tasks: Sequence[Row]) -> List[CellError]:
    errors = []
    for index, task in enumerate(tasks):
        errors.extend(_required_field_errors(task, index, "tasks"))
        errors.extend(_check_min(task, index, "tasks", "Duration", 1, "Duration must be at least 1"))
        errors.extend(_check_min(
            task, index, "tasks", "MaxConcurrent", 1, "Max Concurrent must be a positive number"
        ))
    return errors


ENTITY_VALIDATORS = {
    "clients": validate_client_rows,
    "workers": validate_worker_rows,
    "tasks": validate_task_rows,
}


# --------- Cross-Reference Validator ---------
def check_missing_columns(rows: Sequence[Row], entity_type: str) -> Optional[str]:
    if len(rows) == 0:
        return None

    first_row = rows[0]
    if not first_row:
        return f"Error: No rows found in {entity_type} data. Please upload a non-empty file."

    actual_columns = set(first_row.keys())
    missing = [col for col in REQUIRED_COLUMNS[entity_type] if col not in actual_columns]
    if missing:
        return (
            f"Missing required columns in {entity_type} data: {', '.join(missing)}. "
            "Please upload a file with these columns."
        )
    return None


def find_duplicate_ids(rows: Sequence[Row], entity_type: str) -> List[Any]:
    """Every occurrence of an ID after its first one, in row order.

    An ID appearing three times is returned twice.
    """
    id_field = ID_COLUMNS[entity_type]
    ids = [row.get(id_field) for row in rows if not _is_falsy(row.get(id_field))]
    first_seen = {}
    duplicates = []
    for index, value in enumerate(ids):
        key = _as_text(value)
        if key in first_seen:
            duplicates.append(value)
        else:
            first_seen[key] = index
    return duplicates


def check_duplicate_ids(rows: Sequence[Row], entity_type: str) -> Optional[str]:
    duplicates = find_duplicate_ids(rows, entity_type)
    if duplicates:
        id_field = ID_COLUMNS[entity_type]
        return f"Duplicate {id_field} found in {entity_type}: {', '.join(_as_text(d) for d in duplicates)}"
    return None


def check_task_references(clients: Sequence[Row], tasks: Sequence[Row]) -> List[CellError]:
    errors = []
    if not clients or not tasks:
        return errors

    task_ids = {_as_text(task.get("TaskID")) for task in tasks}
    for index, client in enumerate(clients):
        requested = client.get("RequestedTaskIDs")
        if _is_falsy(requested):
            continue
        invalid = [task_id for task_id in _split_list(requested) if task_id not in task_ids]
        if invalid:
            errors.append(CellError(
                "clients", index, "RequestedTaskIDs", f"Invalid task IDs: {', '.join(invalid)}"
            ))
    return errors


def check_skill_coverage(workers: Sequence[Row], tasks: Sequence[Row]) -> List[CellError]:
    errors = []
    if not workers or not tasks:
        return errors

    worker_skills = set()
    for worker in workers:
        skills = worker.get("Skills")
        if not _is_falsy(skills):
            worker_skills.update(skill.lower() for skill in _split_list(skills))

    for index, task in enumerate(tasks):
        required = task.get("RequiredSkills")
        if _is_falsy(required):
            continue
        missing = [skill for skill in (s.lower() for s in _split_list(required)) if skill not in worker_skills]
        if missing:
            errors.append(CellError(
                "tasks", index, "RequiredSkills", f"No workers available with skills: {', '.join(missing)}"
            ))
    return errors


def check_worker_capacity(workers: Sequence[Row]) -> List[CellError]:
    errors = []
    for index, worker in enumerate(workers):
        slots_raw = worker.get("AvailableSlots")
        max_load_raw = worker.get("MaxLoadPerPhase")
        if _is_falsy(slots_raw) or _is_falsy(max_load_raw):
            continue

        # Malformed slot lists are reported by validate_worker_rows
        slots = parse_slot_list(slots_raw)
        max_load = _to_number(max_load_raw)
        if slots is None or max_load is None:
            continue
        if len(slots) < max_load:
            errors.append(CellError(
                "workers", index, "MaxLoadPerPhase",
                f"Max load ({_format_number(max_load)}) exceeds available slots ({len(slots)})"
            ))
    return errors


# --------- Validation Orchestrator ---------
def validate_all_data(clients: Sequence[Row], workers: Sequence[Row], tasks: Sequence[Row]) -> ValidationReport:
    collections = {"clients": clients, "workers": workers, "tasks": tasks}
    cell_errors: List[CellError] = []
    global_errors: List[str] = []

    # a. Missing required columns
    for entity_type, rows in collections.items():
        message = check_missing_columns(rows, entity_type)
        if message:
            global_errors.append(message)

    # b. Duplicate IDs
    for entity_type, rows in collections.items():
        message = check_duplicate_ids(rows, entity_type)
        if message:
            global_errors.append(message)

    # c. Per-entity field checks
    for entity_type, rows in collections.items():
        cell_errors.extend(ENTITY_VALIDATORS[entity_type](rows))

    # d. Cross references
    cell_errors.extend(check_task_references(clients, tasks))
    cell_errors.extend(check_skill_coverage(workers, tasks))

    # e. Worker capacity
    cell_errors.extend(check_worker_capacity(workers))

    report = ValidationReport(cell_errors, global_errors)
    logger.debug(
        "Full validation: %d cell errors, %d global errors",
        len(report.cell_errors), len(report.global_errors)
    )
    return report


def validate_entity_data(rows: Sequence[Row], entity_type: str) -> ValidationReport:
    """Column presence and required-field checks for one freshly ingested collection."""
    ensure_entity_type(entity_type)
    if len(rows) == 0:
        return ValidationReport()

    global_errors = []
    message = check_missing_columns(rows, entity_type)
    if message:
        global_errors.append(message)

    cell_errors = []
    for index, row in enumerate(rows):
        cell_errors.extend(_required_field_errors(row or {}, index, entity_type))

    return ValidationReport(cell_errors, global_errors)
