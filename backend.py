import os
import json
import math
from datetime import date, datetime, time
import logging
from typing import List, Dict, Any, Optional

import numpy as np
import pandas as pd
from pydantic import BaseModel

from settings import Settings
from validation import (
    ENTITY_TYPES,
    ValidationReport,
    ensure_entity_type,
    validate_all_data,
    validate_entity_data,
)
from rules import RuleStore, InterpretationResult, interpret_rule_phrase
from gpt_agent import GPTAgent

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

SUPPORTED_EXTENSIONS = (".csv", ".xlsx", ".xls")


class UnsupportedFileError(ValueError):
    pass


class UnknownWeightError(KeyError):
    pass


class UnknownPresetError(KeyError):
    pass


# --------- Prioritization weights ---------
class PrioritizationWeights(BaseModel):
    priorityLevel: float = 50
    fulfillment: float = 30
    fairness: float = 20
    efficiency: float = 40
    cost: float = 25
    speed: float = 35


PRESET_PROFILES: Dict[str, Dict[str, Any]] = {
    "Maximize Fulfillment": {
        "description": "Prioritize completing all client requests",
        "weights": {"priorityLevel": 40, "fulfillment": 80, "fairness": 30,
                    "efficiency": 50, "cost": 20, "speed": 40},
    },
    "Fair Distribution": {
        "description": "Ensure balanced workload across workers",
        "weights": {"priorityLevel": 30, "fulfillment": 50, "fairness": 80,
                    "efficiency": 40, "cost": 30, "speed": 30},
    },
    "Minimize Workload": {
        "description": "Reduce worker stress and burnout",
        "weights": {"priorityLevel": 20, "fulfillment": 40, "fairness": 70,
                    "efficiency": 60, "cost": 40, "speed": 20},
    },
    "Cost Optimized": {
        "description": "Minimize operational costs",
        "weights": {"priorityLevel": 30, "fulfillment": 50, "fairness": 40,
                    "efficiency": 70, "cost": 80, "speed": 30},
    },
}


class IngestResult:
    def __init__(self, entity_type: str, accepted: bool, report: ValidationReport, row_count: int):
        self.entity_type = entity_type
        self.accepted = accepted
        self.report = report
        self.row_count = row_count

    def to_dict(self):
        return {
            "entityType": self.entity_type,
            "accepted": self.accepted,
            "rowCount": self.row_count,
            "validation": self.report.to_dict(),
        }


def check_table_extension(path: str) -> str:
    extension = os.path.splitext(path)[1].lower()
    if extension not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFileError(
            f"Unsupported file type '{extension or path}'. Expected one of: {', '.join(SUPPORTED_EXTENSIONS)}"
        )
    return extension


def read_table_file(path: str) -> List[Row]:
    """Parse a CSV or Excel sheet into row records keyed by column name."""
    if check_table_extension(path) == ".csv":
        df = pd.read_csv(path)
    else:
        df = pd.read_excel(path, sheet_name=0)

    # Blank cells become empty strings so the validators see them as absent
    df = df.fillna("")
    return clean_rows(df.to_dict(orient="records"))


def clean_rows(data: List[Row]) -> List[Row]:
    """Clean data to ensure JSON serialization compatibility"""
    cleaned_data = []

    for row in data:
        cleaned_row = {}
        for key, value in row.items():
            if value is pd.NaT:
                value = None
            elif isinstance(value, np.generic):
                value = value.item()
            # Excel date cells arrive as pd.Timestamp (a datetime subclass)
            if isinstance(value, (datetime, date, time)):
                value = value.isoformat()
            # Handle different types of invalid values
            if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
                cleaned_row[str(key)] = None
            else:
                cleaned_row[str(key)] = value
        cleaned_data.append(cleaned_row)

    return cleaned_data


class DataManager:
    """In-process dataset context: entity collections, business rules and weights.

    Collections are only ever replaced wholesale; rows handed out are never
    mutated in place.
    """

    def __init__(self, settings: Settings = None, gpt_agent=None):
        self.settings = settings or Settings()
        self.clients: List[Row] = []
        self.workers: List[Row] = []
        self.tasks: List[Row] = []
        self.rules = RuleStore()
        self.weights = PrioritizationWeights()
        self._gpt_agent = gpt_agent

    # --------- Entity collections ---------
    def get_entity(self, entity_type: str) -> List[Row]:
        return getattr(self, ensure_entity_type(entity_type))

    def replace_entity(self, entity_type: str, rows: List[Row]) -> None:
        setattr(self, ensure_entity_type(entity_type), [dict(row) for row in rows])

    def clear_entity(self, entity_type: str) -> None:
        self.replace_entity(entity_type, [])
        logger.info("Cleared %s", entity_type)

    def ingest_rows(self, entity_type: str, rows: List[Row]) -> IngestResult:
        """Gate freshly parsed rows: accept them only if they pass single-entity validation."""
        ensure_entity_type(entity_type)
        report = validate_entity_data(rows, entity_type)
        if report.is_valid:
            self.replace_entity(entity_type, rows)
            logger.info("Accepted %d %s rows", len(rows), entity_type)
        else:
            logger.warning(
                "Rejected %d %s rows: %d cell errors, %d global errors",
                len(rows), entity_type, len(report.cell_errors), len(report.global_errors)
            )
        return IngestResult(entity_type, report.is_valid, report, len(rows))

    def load_file(self, entity_type: str, path: str) -> IngestResult:
        ensure_entity_type(entity_type)
        rows = read_table_file(path)
        logger.info("Parsed %d rows from %s", len(rows), path)
        return self.ingest_rows(entity_type, rows)

    def update_cell(self, entity_type: str, row_index: int, column_id: str, value: Any) -> Row:
        rows = self.get_entity(entity_type)
        if row_index < 0 or row_index >= len(rows):
            raise IndexError(f"Row {row_index} out of range for {entity_type} ({len(rows)} rows)")
        updated = {**rows[row_index], column_id: value}
        self.replace_entity(
            entity_type, [updated if index == row_index else row for index, row in enumerate(rows)]
        )
        return updated

    def snapshot(self) -> Dict[str, List[Row]]:
        return {entity_type: list(self.get_entity(entity_type)) for entity_type in ENTITY_TYPES}

    def validate_all(self) -> ValidationReport:
        report = validate_all_data(self.clients, self.workers, self.tasks)
        logger.info(
            "Validation completed - %d cell errors, %d global errors",
            len(report.cell_errors), len(report.global_errors)
        )
        return report

    # --------- Business rules ---------
    def generate_rule_from_natural_language(self, user_rule_request: str,
                                            clients: List[Row] = None,
                                            workers: List[Row] = None,
                                            tasks: List[Row] = None) -> InterpretationResult:
        """Generate a rule from natural language without adding it to the rules list"""
        clients = self.clients if clients is None else clients
        workers = self.workers if workers is None else workers
        tasks = self.tasks if tasks is None else tasks
        logger.info(
            "Natural language rule request %r (clients=%d, workers=%d, tasks=%d)",
            user_rule_request, len(clients), len(workers), len(tasks)
        )
        return interpret_rule_phrase(user_rule_request)

    def add_rule_from_nl(self, user_rule_request: str) -> InterpretationResult:
        result = self.generate_rule_from_natural_language(user_rule_request)
        if result.success:
            self.rules.add(result.rule)
        return result

    # --------- Prioritization ---------
    def set_weights(self, weights: Dict[str, float]) -> PrioritizationWeights:
        self.weights = PrioritizationWeights(**weights)
        return self.weights

    def update_weight(self, key: str, value: float) -> PrioritizationWeights:
        if key not in PrioritizationWeights.model_fields:
            raise UnknownWeightError(key)
        self.weights = self.weights.model_copy(update={key: float(value)})
        return self.weights

    def apply_preset(self, name: str) -> PrioritizationWeights:
        if name not in PRESET_PROFILES:
            raise UnknownPresetError(name)
        return self.set_weights(PRESET_PROFILES[name]["weights"])

    # --------- Export ---------
    def export_config(self) -> Dict[str, Any]:
        return {
            "clients": self.clients,
            "workers": self.workers,
            "tasks": self.tasks,
            "rules": self.rules.to_list(),
            "weights": self.weights.model_dump(),
        }

    def export_files(self) -> List[Dict[str, Any]]:
        files_data = []
        for entity_type in ENTITY_TYPES:
            rows = self.get_entity(entity_type)
            if rows:
                content = pd.DataFrame(rows).to_csv(index=False)
                files_data.append({
                    "name": f"{entity_type}_cleaned.csv",
                    "content": content,
                    "type": "text/csv",
                    "size": len(content.encode("utf-8")),
                })

        config_json = json.dumps(self.export_config(), indent=2, default=str)
        files_data.append({
            "name": "rules_config.json",
            "content": config_json,
            "type": "application/json",
            "size": len(config_json.encode("utf-8")),
        })
        return files_data

    def export_all(self, output_dir: Optional[str] = None) -> List[str]:
        output_dir = output_dir or self.settings.export_dir
        os.makedirs(output_dir, exist_ok=True)
        written = []
        for file_data in self.export_files():
            path = os.path.join(output_dir, file_data["name"])
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(file_data["content"])
            written.append(path)
        logger.info("Exported %d files to %s", len(written), output_dir)
        return written

    # --------- AI query ---------
    def ai_query(self, prompt: str) -> str:
        if self._gpt_agent is None:
            self._gpt_agent = GPTAgent(self.settings)
        return self._gpt_agent.ask(prompt)
