import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend import DataManager
from settings import Settings


@pytest.fixture
def clients():
    return [
        {"ClientID": "C1", "ClientName": "Acme", "PriorityLevel": 3,
         "RequestedTaskIDs": "T1,T2", "GroupTag": "GroupA", "AttributesJSON": '{"location": "NY"}'},
        {"ClientID": "C2", "ClientName": "Globex", "PriorityLevel": 5,
         "RequestedTaskIDs": "T2", "GroupTag": "GroupB", "AttributesJSON": ""},
    ]


@pytest.fixture
def workers():
    return [
        {"WorkerID": "W1", "WorkerName": "Ann", "Skills": "cook, drive", "AvailableSlots": "[1,2,3]",
         "MaxLoadPerPhase": 2, "WorkerGroup": "Senior", "QualificationLevel": "4"},
        {"WorkerID": "W2", "WorkerName": "Bob", "Skills": "paint", "AvailableSlots": "[2,4]",
         "MaxLoadPerPhase": 1, "WorkerGroup": "Junior", "QualificationLevel": "2"},
    ]


@pytest.fixture
def tasks():
    return [
        {"TaskID": "T1", "TaskName": "Prep", "Category": "Kitchen", "Duration": 1,
         "RequiredSkills": "Cook", "PreferredPhases": "1-2", "MaxConcurrent": 2},
        {"TaskID": "T2", "TaskName": "Deliver", "Category": "Logistics", "Duration": 2,
         "RequiredSkills": "drive, paint", "PreferredPhases": "2,3", "MaxConcurrent": 1},
    ]


@pytest.fixture
def settings(tmp_path):
    settings = Settings()
    settings.upload_dir = str(tmp_path / "uploads")
    settings.export_dir = str(tmp_path / "exports")
    settings.github_token = None
    return settings


@pytest.fixture
def data_manager(settings):
    return DataManager(settings)
