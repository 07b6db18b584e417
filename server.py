import threading
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from prompt_debugger.base_utils import logger
from prompt_debugger.config import AppConfig
from prompt_debugger.errors import PromptDebuggerError, RequestError
from prompt_debugger.pipeline import PipelineOrchestrator

app = FastAPI(title="Prompt Debugger")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class AnalyzePromptRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", protected_namespaces=())

    conversation_history: Optional[List[Dict[str, Any]]] = Field(default=None, alias="conversationHistory")
    target_response: Optional[Any] = Field(default=None, alias="targetResponse")
    feedback: Optional[Any] = None
    execution_context: Optional[Any] = Field(default=None, alias="executionContext")
    governing_prompt: Optional[str] = Field(default=None, alias="dc_node_prompt")
    variables: Optional[List[Dict[str, Any]]] = None
    skills: Optional[List[Dict[str, Any]]] = None
    skill_executed: Optional[bool] = Field(default=None, alias="skillExecuted")
    model_configuration: Optional[Dict[str, Any]] = Field(default=None, alias="modelConfig")


_orchestrator_lock = threading.Lock()
_orchestrator: Optional[PipelineOrchestrator] = None


def get_orchestrator() -> PipelineOrchestrator:
    global _orchestrator
    with _orchestrator_lock:
        if _orchestrator is None:
            _orchestrator = PipelineOrchestrator.from_config(AppConfig.from_env())
        return _orchestrator


def _error_response(status_code: int, err: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "error": err})


@app.exception_handler(RequestValidationError)
async def _invalid_body(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in e.get("loc", ()) if p != "body") for e in exc.errors()]
    err = RequestError(fields, message="Malformed request body")
    return _error_response(400, err.to_dict())


@app.post("/api/analyze-prompt")
def analyze_prompt(body: AnalyzePromptRequest, orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    payload = body.model_dump(by_alias=False)
    payload["model_config"] = payload.pop("model_configuration", None)
    try:
        result = orchestrator.run_analysis(payload)
    except RequestError as e:
        return _error_response(400, e.to_dict())
    except PromptDebuggerError as e:
        logger.error(f"Analysis failed: {e}", exc_info=True)
        return _error_response(500, e.to_dict())
    except Exception:
        logger.exception("Unexpected failure while analysing prompt")
        return _error_response(500, {"kind": "internal_error", "message": "Unexpected failure while analysing prompt"})

    return JSONResponse(status_code=200 if result.succeeded else 422, content=result.to_dict())


@app.get("/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
