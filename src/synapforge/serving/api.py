import contextlib
import logging
import sys
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Security
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.security.api_key import APIKeyHeader
from prometheus_fastapi_instrumentator import Instrumentator
from pythonjsonlogger import json
from starlette.status import HTTP_403_FORBIDDEN

from synapforge import __version__
from synapforge.generation.errors import ContextLengthError, GenerationError
from synapforge.generation.generator import GenerationResult
from synapforge.serving.config import ServingConfig
from synapforge.serving.engine import LLMEngine, ModelNotLoadedError
from synapforge.serving.schemas import (
    ChatChoice,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    CompletionChoice,
    CompletionRequest,
    CompletionResponse,
    DeleteModelResponse,
    EmbeddingData,
    EmbeddingRequest,
    EmbeddingResponse,
    EmbeddingUsage,
    ModelInfo,
    ModelListResponse,
    SamplingParams,
    UsageInfo,
    now,
)

# Structured logging
logger = logging.getLogger()
logHandler = logging.StreamHandler(sys.stdout)
formatter = json.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
logHandler.setFormatter(formatter)
logger.addHandler(logHandler)

config = ServingConfig()
logger.setLevel(config.log_level)

engine = LLMEngine(config)

# API key security schemes: either header is accepted
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)


async def get_api_key(
    api_key: str | None = Security(api_key_header),
    bearer: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> str | None:
    """Validate the API key when one is configured."""
    if not config.api_key:
        return None
    if api_key == config.api_key:
        return api_key
    if bearer is not None and bearer.credentials == config.api_key:
        return bearer.credentials
    raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Could not validate credentials")


@contextlib.asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, Any]:
    logger.info("Starting up...")
    engine.load_model()
    yield
    engine.unload_model()
    logger.info("Shutting down...")


app = FastAPI(
    title="Synapforge Inference API",
    description="OpenAI-compatible text completion API.",
    version=__version__,
    lifespan=lifespan,
)

# Prometheus Metrics
Instrumentator().instrument(app).expose(app)


@app.exception_handler(GenerationError)
async def generation_error_handler(_request: Request, exc: GenerationError) -> JSONResponse:
    logger.error(f"Generation failed: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": {"message": str(exc), "type": type(exc).__name__, "code": None}},
    )


router = APIRouter(prefix="/v1")


async def _run_generation(prompt: str, request: SamplingParams) -> GenerationResult:
    if request.stream:
        raise HTTPException(status_code=400, detail="Streaming responses are not supported")
    try:
        gen_config = engine.generation_config(
            max_tokens=request.max_tokens,
            temperature=request.temperature,
            top_k=request.top_k,
            top_p=request.top_p,
            repeat_penalty=request.repeat_penalty,
            repeat_last_n=request.repeat_last_n,
            seed=request.seed,
        )
        # Run in the threadpool so the decode loop never blocks the event loop
        return await run_in_threadpool(engine.generate, prompt, gen_config)
    except ModelNotLoadedError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ContextLengthError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _usage(result: GenerationResult) -> UsageInfo:
    return UsageInfo(
        prompt_tokens=result.prompt_tokens,
        completion_tokens=result.tokens_generated,
        total_tokens=result.prompt_tokens + result.tokens_generated,
    )


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    device = str(engine.model.device) if engine.model is not None else "unloaded"
    return {"status": "ok", "device": device}


@router.post("/completions", response_model=CompletionResponse)
async def create_completion(
    request: CompletionRequest, _api_key: str | None = Depends(get_api_key)
) -> CompletionResponse:
    result = await _run_generation(request.prompt, request)
    return CompletionResponse(
        model=engine.model_name,
        choices=[CompletionChoice(index=0, text=result.text, finish_reason=result.finish_reason)],
        usage=_usage(result),
    )


@router.post("/chat/completions", response_model=ChatCompletionResponse)
async def create_chat_completion(
    request: ChatCompletionRequest, _api_key: str | None = Depends(get_api_key)
) -> ChatCompletionResponse:
    messages = [m.model_dump() for m in request.messages]
    try:
        prompt = engine.build_chat_prompt(messages)
    except ModelNotLoadedError as e:
        raise HTTPException(status_code=503, detail=str(e))

    result = await _run_generation(prompt, request)
    return ChatCompletionResponse(
        model=engine.model_name,
        choices=[
            ChatChoice(
                index=0,
                message=ChatMessage(role="assistant", content=result.text),
                finish_reason=result.finish_reason,
            )
        ],
        usage=_usage(result),
    )


@router.post("/embeddings", response_model=EmbeddingResponse)
async def create_embeddings(
    request: EmbeddingRequest, _api_key: str | None = Depends(get_api_key)
) -> EmbeddingResponse:
    try:
        vectors, total_tokens = await run_in_threadpool(engine.embed, request.input)
    except ModelNotLoadedError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except (KeyError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Cannot embed input: {e}")

    return EmbeddingResponse(
        data=[EmbeddingData(embedding=vector, index=i) for i, vector in enumerate(vectors)],
        model=engine.model_name,
        usage=EmbeddingUsage(prompt_tokens=total_tokens, total_tokens=total_tokens),
    )


def _served_model(model_id: str) -> ModelInfo:
    if not engine.is_loaded or model_id != engine.model_name:
        raise HTTPException(status_code=404, detail=f"Model '{model_id}' not found")
    return ModelInfo(id=engine.model_name, created=engine.loaded_at or now())


@router.get("/models", response_model=ModelListResponse)
async def list_models(_api_key: str | None = Depends(get_api_key)) -> ModelListResponse:
    data = [_served_model(engine.model_name)] if engine.is_loaded else []
    return ModelListResponse(data=data)


@router.get("/models/{model_id}", response_model=ModelInfo)
async def retrieve_model(model_id: str, _api_key: str | None = Depends(get_api_key)) -> ModelInfo:
    return _served_model(model_id)


@router.delete("/models/{model_id}", response_model=DeleteModelResponse)
async def delete_model(model_id: str, _api_key: str | None = Depends(get_api_key)) -> DeleteModelResponse:
    info = _served_model(model_id)
    engine.unload_model()
    logger.info(f"Model {info.id} unloaded on request")
    return DeleteModelResponse(id=info.id, deleted=True)


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("synapforge.serving.api:app", host="0.0.0.0", port=8000, reload=True)
