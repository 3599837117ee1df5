"""FastAPI application exposing kbchat services."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

import chromadb
from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from kbchat.api.schemas import (
    ChatMessageModel,
    ChatRequest,
    CollectionStatsResponse,
    DocumentListResponse,
    DocumentModel,
    DocumentStatsModel,
    LogPageResponse,
    SessionListResponse,
    SessionModel,
)
from kbchat.config import Settings, get_settings
from kbchat.embeddings import ChromaVectorStore, VectorStore, build_embedding_backend
from kbchat.errors import (
    ChatProcessingError,
    CompletionError,
    EmbeddingError,
    IngestionError,
    NotFoundError,
    UnsupportedFileTypeError,
    VectorStoreError,
)
from kbchat.ingestion import ChunkingConfig, DocumentIngestionService, SentenceChunker
from kbchat.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from kbchat.retrieval import RetrievalConfig, SimilarityRetriever
from kbchat.services import ChatService, build_completion_backend
from kbchat.storage import InMemoryDocumentStore, InMemorySessionStore, SessionStore

_UPSTREAM_ERRORS = (ChatProcessingError, EmbeddingError, VectorStoreError, CompletionError)


@dataclass(frozen=True)
class AppDependencies:
    ingestion: DocumentIngestionService
    chat: ChatService
    sessions: SessionStore
    vector_store: VectorStore


def build_dependencies(settings: Settings) -> AppDependencies:
    embeddings = build_embedding_backend(settings)
    chroma_client = None
    if settings.chroma_host:
        chroma_client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
    vector_store = ChromaVectorStore(
        settings.chroma_collection,
        dimension=settings.embedding_dim,
        distance_metric=settings.distance_metric,
        client=chroma_client,
        persist_directory=None if chroma_client else settings.chroma_persist_dir,
    )
    ingestion = DocumentIngestionService(
        chunker=SentenceChunker(ChunkingConfig(chunk_size=settings.chunk_size, chunk_overlap=settings.chunk_overlap)),
        embeddings=embeddings,
        vector_store=vector_store,
        documents=InMemoryDocumentStore(),
    )
    sessions = InMemorySessionStore(log_capacity=settings.log_capacity)
    retriever = SimilarityRetriever(
        embeddings,
        vector_store,
        RetrievalConfig(
            top_k=settings.top_k,
            similarity_threshold=settings.similarity_threshold,
            max_top_k=settings.max_top_k,
        ),
    )
    chat = ChatService(
        retriever=retriever,
        sessions=sessions,
        generator=build_completion_backend(settings),
        allow_client_session_ids=settings.allow_client_session_ids,
    )
    return AppDependencies(ingestion=ingestion, chat=chat, sessions=sessions, vector_store=vector_store)


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # A dimension or metric mismatch must stop the service before it takes traffic.
        await deps.vector_store.ensure_collection(settings.embedding_dim, settings.distance_metric)
        logger.info("api.startup", collection=settings.chroma_collection, environment=settings.environment)
        yield

    app = FastAPI(title="kbchat API", version="0.1.0", lifespan=lifespan)
    app.state.dependencies = deps

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        return JSONResponse(status_code=status_code, content={"detail": detail, "correlation_id": correlation_id})

    @app.exception_handler(IngestionError)
    async def handle_ingestion_error(request: Request, exc: IngestionError) -> JSONResponse:
        logger.warning("ingestion.rejected", detail=str(exc))
        if isinstance(exc, UnsupportedFileTypeError):
            return _error_response(request, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, str(exc))
        return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc))

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(request, status.HTTP_404_NOT_FOUND, str(exc))

    for upstream_error in _UPSTREAM_ERRORS:

        @app.exception_handler(upstream_error)
        async def handle_upstream_error(request: Request, exc: Exception) -> JSONResponse:
            logger.error("upstream.error", error_type=type(exc).__name__, detail=str(exc))
            return _error_response(request, status.HTTP_502_BAD_GATEWAY, str(exc))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled.error", detail=str(exc))
        return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")

    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        if request.headers.get("X-API-Key") != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    def current_user(x_user_id: str | None = Header(default=None), _auth: None = Depends(require_api_key)) -> str:
        # Identity is established upstream; the header carries the authenticated user id.
        if not x_user_id:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-ID header")
        return x_user_id

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    # Documents

    @app.post("/documents", response_model=DocumentModel, status_code=status.HTTP_201_CREATED)
    async def upload_document(
        file: UploadFile = File(...),
        category: str = Form(default="General"),
        version: str = Form(default="v1.0"),
        user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> DocumentModel:
        filename = file.filename or f"upload-{uuid4().hex}"
        suffix = Path(filename).suffix.lower()
        if suffix not in settings.allowed_extensions_tuple:
            await file.close()
            detail = "Invalid file type. Allowed: " + ", ".join(settings.allowed_extensions_tuple)
            raise HTTPException(status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail=detail)
        data = await file.read(settings.max_upload_bytes + 1)
        await file.close()
        if len(data) > settings.max_upload_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File too large (>{settings.max_upload_size_mb}MB): {filename}",
            )
        if not data:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File is empty: {filename}")
        metadata = await deps.ingestion.ingest(
            user_id,
            data,
            filename,
            file.content_type,
            category=category or "General",
            version=version or "v1.0",
        )
        return DocumentModel.model_validate(metadata)

    @app.get("/documents", response_model=DocumentListResponse)
    async def list_documents(
        user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> DocumentListResponse:
        return DocumentListResponse(
            documents=[DocumentModel.model_validate(doc) for doc in deps.ingestion.list_documents(user_id)],
            stats=DocumentStatsModel.model_validate(deps.ingestion.stats(user_id)),
        )

    @app.get("/documents/stats", response_model=DocumentStatsModel)
    async def document_stats(
        user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> DocumentStatsModel:
        return DocumentStatsModel.model_validate(deps.ingestion.stats(user_id))

    @app.get("/documents/{doc_id}", response_model=DocumentModel)
    async def get_document(
        doc_id: str,
        user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> DocumentModel:
        document = deps.ingestion.get_document(doc_id)
        if document is None or document.user_id != user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
        return DocumentModel.model_validate(document)

    @app.delete("/documents/{doc_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_document(
        doc_id: str,
        user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> Response:
        document = deps.ingestion.get_document(doc_id)
        if document is None or document.user_id != user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
        await deps.ingestion.delete_document(doc_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # Chat

    @app.post("/chat", response_model=ChatMessageModel)
    async def chat(
        payload: ChatRequest,
        user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> ChatMessageModel:
        message = await deps.chat.process_question(payload.question, user_id, payload.session_id)
        return ChatMessageModel.model_validate(message)

    @app.post("/chat/sessions", response_model=SessionModel, status_code=status.HTTP_201_CREATED)
    async def create_session(
        user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> SessionModel:
        return SessionModel.model_validate(deps.sessions.create_session(user_id))

    @app.get("/chat/sessions", response_model=SessionListResponse)
    async def list_sessions(
        user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> SessionListResponse:
        return SessionListResponse(
            sessions=[SessionModel.model_validate(session) for session in deps.sessions.list_sessions(user_id)],
        )

    @app.get("/chat/sessions/{session_id}", response_model=SessionModel)
    async def get_session(
        session_id: str,
        user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> SessionModel:
        session = deps.sessions.get_session(session_id)
        if session is None or session.user_id != user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
        return SessionModel.model_validate(session)

    @app.delete("/chat/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_session(
        session_id: str,
        user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> Response:
        session = deps.sessions.get_session(session_id)
        if session is None or session.user_id != user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
        deps.sessions.delete_session(session_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # Chat logs

    @app.get("/logs", response_model=LogPageResponse)
    async def list_logs(
        page: int = 1,
        limit: int = 20,
        user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> LogPageResponse:
        limit = max(1, min(limit, settings.logs_max_page_size))
        return LogPageResponse.model_validate(deps.sessions.get_logs(max(page, 1), limit, user_id))

    @app.get("/logs/{log_id}", response_model=ChatMessageModel)
    async def get_log(
        log_id: str,
        user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> ChatMessageModel:
        log = deps.sessions.get_log(log_id)
        if log is None or log.user_id != user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat log not found")
        return ChatMessageModel.model_validate(log)

    @app.delete("/logs/{log_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_log(
        log_id: str,
        user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> Response:
        log = deps.sessions.get_log(log_id)
        if log is None or log.user_id != user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat log not found")
        deps.sessions.delete_log(log_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.delete("/logs", status_code=status.HTTP_204_NO_CONTENT)
    async def clear_logs(
        _user_id: str = Depends(current_user),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> Response:
        deps.sessions.clear_all()
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # Vector index

    @app.get("/index/stats", response_model=CollectionStatsResponse)
    async def index_stats(deps: AppDependencies = Depends(get_dependencies)) -> CollectionStatsResponse:
        info = await deps.vector_store.collection_info()
        return CollectionStatsResponse(
            collection=settings.chroma_collection,
            vector_count=info.vector_count,
            status=info.status,
        )

    @app.delete("/index", status_code=status.HTTP_204_NO_CONTENT)
    async def clear_index(
        _auth: None = Depends(require_api_key),
        deps: AppDependencies = Depends(get_dependencies),
    ) -> Response:
        await deps.vector_store.clear()
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # Operations

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from kbchat import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    @app.get("/healthz/ready")
    async def readiness(deps: AppDependencies = Depends(get_dependencies)) -> dict[str, str]:
        info = await deps.vector_store.collection_info()
        if info.status == "unavailable":
            return {"status": "error", "detail": "vector store unavailable"}
        return {"status": "ready", "vector_store": info.status}

    return app


app = create_app()
