# main.py
import os
import shutil
import uuid
import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from backend import (
    PRESET_PROFILES,
    DataManager,
    UnknownPresetError,
    UnknownWeightError,
    UnsupportedFileError,
    check_table_extension,
)
from gpt_agent import AgentConfigurationError
from rules import RuleNotFoundError, new_rule_id, parse_rule
from settings import Settings, configure_logging
from validation import ENTITY_TYPES, REQUIRED_COLUMNS, UnknownEntityTypeError, ensure_entity_type

logger = logging.getLogger(__name__)


# --------- Request bodies ---------
class RowsPayload(BaseModel):
    rows: List[Dict[str, Any]]


class CellUpdate(BaseModel):
    column: str
    value: Any = None


class RulePrompt(BaseModel):
    prompt: str = ""
    clients: Optional[List[Dict[str, Any]]] = None
    workers: Optional[List[Dict[str, Any]]] = None
    tasks: Optional[List[Dict[str, Any]]] = None


class WeightValue(BaseModel):
    value: float


class AIQuery(BaseModel):
    prompt: Optional[str] = None


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message, **extra})


def get_data_manager(request: Request) -> DataManager:
    return request.app.state.data_manager


def save_upload_file(upload_dir: str, upload_file: UploadFile) -> str:
    os.makedirs(upload_dir, exist_ok=True)
    file_id = str(uuid.uuid4())
    file_name = os.path.basename(upload_file.filename or "upload")
    file_path = os.path.join(upload_dir, f"{file_id}_{file_name}")
    with open(file_path, "wb") as buffer:
        shutil.copyfileobj(upload_file.file, buffer)
    return file_path


def _dataset_response(dm: DataManager, **extra) -> Dict[str, Any]:
    report = dm.validate_all()
    return {
        "status": "success",
        **extra,
        "validation": report.to_dict(),
        "data": dm.snapshot(),
        "summary": {
            "total_clients": len(dm.clients),
            "total_workers": len(dm.workers),
            "total_tasks": len(dm.tasks),
            "error_count": len(report.cell_errors) + len(report.global_errors),
        },
    }


def create_app(settings: Settings = None, data_manager: DataManager = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Data Alchemist")
    app.state.settings = settings
    app.state.data_manager = data_manager or DataManager(settings)

    # Enable CORS for frontend communication
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UnknownEntityTypeError)
    async def unknown_entity_handler(_: Request, exc: UnknownEntityTypeError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(RuleNotFoundError)
    async def rule_not_found_handler(_: Request, exc: RuleNotFoundError) -> JSONResponse:
        return _error(404, str(exc))

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    # --------- Ingest ---------
    @app.post("/upload/{entity_type}")
    def upload_entity_file(entity_type: str, file: UploadFile = File(...),
                           dm: DataManager = Depends(get_data_manager)):
        ensure_entity_type(entity_type)
        try:
            path = save_upload_file(settings.upload_dir, file)
            result = dm.load_file(entity_type, path)
        except UnsupportedFileError as e:
            return _error(400, str(e))
        except Exception as e:
            logger.exception("Error in upload endpoint")
            return _error(500, str(e))
        # A rejected file is reported, not fatal: the current dataset is still returned
        return _dataset_response(dm, ingest=result.to_dict())

    @app.post("/upload")
    def upload_files(clients: Optional[UploadFile] = File(None),
                     workers: Optional[UploadFile] = File(None),
                     tasks: Optional[UploadFile] = File(None),
                     dm: DataManager = Depends(get_data_manager)):
        uploads = {"clients": clients, "workers": workers, "tasks": tasks}
        if all(upload is None for upload in uploads.values()):
            return _error(400, "No files provided")
        ingests = []
        try:
            # Reject the whole batch before any collection is replaced
            for upload in uploads.values():
                if upload is not None:
                    check_table_extension(upload.filename or "")
            for entity_type, upload in uploads.items():
                if upload is not None:
                    path = save_upload_file(settings.upload_dir, upload)
                    ingests.append(dm.load_file(entity_type, path).to_dict())
        except UnsupportedFileError as e:
            return _error(400, str(e))
        except Exception as e:
            logger.exception("Error in upload endpoint")
            return _error(500, str(e))
        return _dataset_response(dm, ingests=ingests)

    @app.post("/data/{entity_type}")
    def ingest_rows(entity_type: str, payload: RowsPayload, dm: DataManager = Depends(get_data_manager)):
        result = dm.ingest_rows(entity_type, payload.rows)
        return _dataset_response(dm, ingest=result.to_dict())

    # --------- Dataset ---------
    @app.get("/data")
    def get_data(dm: DataManager = Depends(get_data_manager)):
        return _dataset_response(dm)

    @app.patch("/data/{entity_type}/{row_index}")
    def update_cell(entity_type: str, row_index: int, payload: CellUpdate,
                    dm: DataManager = Depends(get_data_manager)):
        try:
            row = dm.update_cell(entity_type, row_index, payload.column, payload.value)
        except IndexError as e:
            return _error(404, str(e))
        return _dataset_response(dm, row=row)

    @app.delete("/data/{entity_type}")
    def clear_entity(entity_type: str, dm: DataManager = Depends(get_data_manager)):
        dm.clear_entity(entity_type)
        return _dataset_response(dm)

    @app.get("/validate")
    def validate(dm: DataManager = Depends(get_data_manager)):
        return dm.validate_all().to_dict()

    @app.get("/schema")
    def schema():
        return {entity_type: REQUIRED_COLUMNS[entity_type] for entity_type in ENTITY_TYPES}

    # --------- Business rules ---------
    @app.post("/ai_generate_rule")
    def ai_generate_rule(payload: RulePrompt, dm: DataManager = Depends(get_data_manager)):
        result = dm.generate_rule_from_natural_language(
            payload.prompt, payload.clients, payload.workers, payload.tasks
        )
        return result.to_dict()

    @app.get("/rules")
    def list_rules(dm: DataManager = Depends(get_data_manager)):
        return {"status": "success", "rules": dm.rules.to_list()}

    @app.post("/rules", status_code=201)
    def add_rule(payload: Dict[str, Any], dm: DataManager = Depends(get_data_manager)):
        data = dict(payload)
        data.setdefault("id", new_rule_id())
        try:
            rule = parse_rule(data)
        except SchemaError as e:
            return _error(400, "Invalid rule", errors=e.errors(include_url=False, include_context=False))
        dm.rules.add(rule)
        return {"status": "success", "rule": rule.to_dict()}

    @app.put("/rules/{rule_id}")
    def update_rule(rule_id: str, payload: Dict[str, Any], dm: DataManager = Depends(get_data_manager)):
        try:
            rule = dm.rules.update(rule_id, payload)
        except SchemaError as e:
            return _error(400, "Invalid rule", errors=e.errors(include_url=False, include_context=False))
        return {"status": "success", "rule": rule.to_dict()}

    @app.post("/rules/{rule_id}/toggle")
    def toggle_rule(rule_id: str, dm: DataManager = Depends(get_data_manager)):
        rule = dm.rules.toggle(rule_id)
        return {"status": "success", "rule": rule.to_dict()}

    @app.delete("/rules/{rule_id}")
    def delete_rule(rule_id: str, dm: DataManager = Depends(get_data_manager)):
        dm.rules.remove(rule_id)
        return {"status": "success", "rules": dm.rules.to_list()}

    # --------- Prioritization ---------
    @app.get("/weights")
    def get_weights(dm: DataManager = Depends(get_data_manager)):
        return dm.weights.model_dump()

    @app.put("/weights")
    def set_weights(payload: Dict[str, float], dm: DataManager = Depends(get_data_manager)):
        try:
            weights = dm.set_weights(payload)
        except SchemaError as e:
            return _error(400, "Invalid weights", errors=e.errors(include_url=False, include_context=False))
        return weights.model_dump()

    @app.patch("/weights/{key}")
    def update_weight(key: str, payload: WeightValue, dm: DataManager = Depends(get_data_manager)):
        try:
            weights = dm.update_weight(key, payload.value)
        except UnknownWeightError:
            return _error(404, f"Unknown weight: {key}")
        return weights.model_dump()

    @app.get("/weights/presets")
    def list_presets():
        return {"presets": [{"name": name, **profile} for name, profile in PRESET_PROFILES.items()]}

    @app.post("/weights/presets/{name}")
    def apply_preset(name: str, dm: DataManager = Depends(get_data_manager)):
        try:
            weights = dm.apply_preset(name)
        except UnknownPresetError:
            return _error(404, f"Unknown preset: {name}")
        return weights.model_dump()

    # --------- Export ---------
    @app.post("/export")
    def export_data(dm: DataManager = Depends(get_data_manager)):
        if not (dm.clients or dm.workers or dm.tasks):
            return _error(400, "No data to export")
        try:
            written = dm.export_all(settings.export_dir)
        except OSError as e:
            logger.exception("Error in export endpoint")
            return _error(500, str(e))
        return {
            "status": "success",
            "message": f"Data exported successfully to {settings.export_dir}",
            "export_directory": settings.export_dir,
            "files": [{"name": os.path.basename(path), "path": path} for path in written],
        }

    @app.post("/export_download")
    def export_download(dm: DataManager = Depends(get_data_manager)):
        if not (dm.clients or dm.workers or dm.tasks):
            return _error(400, "No data to export")
        files_data = dm.export_files()
        return {
            "status": "success",
            "message": f"Prepared {len(files_data)} files for download",
            "files": files_data,
            "summary": {
                "total_files": len(files_data),
                "clients_count": len(dm.clients),
                "workers_count": len(dm.workers),
                "tasks_count": len(dm.tasks),
                "rules_count": len(dm.rules),
            },
        }

    @app.get("/download/{filename}")
    def download_file(filename: str):
        file_path = os.path.join(settings.export_dir, os.path.basename(filename))
        if not os.path.exists(file_path):
            return _error(404, "File not found")
        return FileResponse(path=file_path, media_type="application/octet-stream", filename=os.path.basename(filename))

    # --------- AI query ---------
    @app.post("/ai_query")
    def ai_query(payload: AIQuery, dm: DataManager = Depends(get_data_manager)):
        try:
            text = dm.ai_query(payload.prompt)
        except AgentConfigurationError as e:
            return JSONResponse(status_code=500, content={"error": str(e)})
        except Exception as e:
            logger.exception("AI query failed")
            return JSONResponse(status_code=500, content={"error": str(e) or "Failed to get AI response"})
        return {"success": True, "aiResponse": text}

    return app


app = create_app()
