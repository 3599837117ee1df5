"""Tests for the FastAPI application."""

from __future__ import annotations

from io import BytesIO
from uuid import uuid4

import chromadb
import pytest
from fastapi.testclient import TestClient

from kbchat.api.app import AppDependencies, create_app
from kbchat.config import Settings
from kbchat.embeddings import ChromaVectorStore, EmbeddingConfig, HashEmbeddingBackend
from kbchat.ingestion import ChunkingConfig, DocumentIngestionService, SentenceChunker
from kbchat.retrieval import RetrievalConfig, SimilarityRetriever
from kbchat.services import FALLBACK_ANSWER, ChatService
from kbchat.storage import InMemoryDocumentStore, InMemorySessionStore

DIM = 16
ALICE = {"X-User-ID": "alice"}
BOB = {"X-User-ID": "bob"}


def make_client(**overrides) -> TestClient:
    collection = f"test-api-{uuid4().hex[:8]}"
    settings = Settings(
        environment="test",
        embedding_dim=DIM,
        chroma_collection=collection,
        similarity_threshold=0.0,
        logs_max_page_size=5,
        **overrides,
    )
    embeddings = HashEmbeddingBackend(EmbeddingConfig(dim=DIM))
    store = ChromaVectorStore(collection, dimension=DIM, client=chromadb.EphemeralClient())
    sessions = InMemorySessionStore(log_capacity=settings.log_capacity)
    deps = AppDependencies(
        ingestion=DocumentIngestionService(
            chunker=SentenceChunker(ChunkingConfig(chunk_size=settings.chunk_size)),
            embeddings=embeddings,
            vector_store=store,
            documents=InMemoryDocumentStore(),
        ),
        chat=ChatService(
            retriever=SimilarityRetriever(
                embeddings, store, RetrievalConfig(similarity_threshold=settings.similarity_threshold)
            ),
            sessions=sessions,
            allow_client_session_ids=settings.allow_client_session_ids,
        ),
        sessions=sessions,
        vector_store=store,
    )
    return TestClient(create_app(settings=settings, dependencies=deps))


def _upload(client: TestClient, name: str, content: bytes, headers=ALICE, **data):
    files = {"file": (name, BytesIO(content), "text/plain")}
    return client.post("/documents", files=files, data=data, headers=headers)


def test_health_endpoints():
    with make_client() as client:
        assert client.get("/livez").json() == {"status": "alive"}
        health = client.get("/healthz")
        assert health.status_code == 200
        assert health.json()["status"] == "ok"
        ready = client.get("/healthz/ready")
        assert ready.json() == {"status": "ready", "vector_store": "ready"}
        assert client.get("/metrics").status_code == 200
        assert "X-Correlation-ID" in health.headers


def test_upload_list_and_chat_flow():
    with make_client() as client:
        response = _upload(client, "handbook.txt", b"Expenses above 500 EUR need approval. Receipts are mandatory.")
        assert response.status_code == 201, response.text
        document = response.json()
        assert document["name"] == "handbook.txt"
        assert document["file_type"] == "txt"
        assert document["category"] == "General"
        assert document["version"] == "v1.0"
        assert document["chunk_count"] == 1

        listing = client.get("/documents", headers=ALICE).json()
        assert [doc["id"] for doc in listing["documents"]] == [document["id"]]
        assert listing["stats"] == {"document_count": 1, "total_chunks": 1}
        assert client.get("/documents/stats", headers=ALICE).json()["total_chunks"] == 1

        index = client.get("/index/stats").json()
        assert index["vector_count"] == 1
        assert index["status"] == "ready"

        answer = client.post("/chat", json={"question": "Do I need receipts?"}, headers=ALICE)
        assert answer.status_code == 200, answer.text
        payload = answer.json()
        assert payload["answer"].startswith("Based on the knowledge base: [Source: handbook.txt]")
        assert payload["sources"][0]["source"] == "handbook.txt"
        assert payload["user_id"] == "alice"


def test_users_cannot_see_each_others_data():
    with make_client() as client:
        document = _upload(client, "secret.txt", b"The launch code is 1234.").json()

        assert client.get(f"/documents/{document['id']}", headers=BOB).status_code == 404
        assert client.delete(f"/documents/{document['id']}", headers=BOB).status_code == 404
        assert client.get("/documents", headers=BOB).json()["documents"] == []

        answer = client.post("/chat", json={"question": "What is the launch code?"}, headers=BOB).json()
        assert answer["answer"] == FALLBACK_ANSWER
        assert answer["sources"] == []

        assert client.get(f"/logs/{answer['id']}", headers=ALICE).status_code == 404


def test_delete_document_removes_vectors():
    with make_client() as client:
        document = _upload(client, "notes.md", b"# Notes\n\nShort note.").json()
        assert client.delete(f"/documents/{document['id']}", headers=ALICE).status_code == 204
        assert client.get(f"/documents/{document['id']}", headers=ALICE).status_code == 404
        assert client.get("/index/stats").json()["vector_count"] == 0


@pytest.mark.parametrize(
    ("name", "content", "status_code"),
    [
        ("tool.exe", b"MZ", 415),
        ("empty.txt", b"", 400),
        ("blank.txt", b"   \n  ", 422),
    ],
)
def test_upload_rejections(name: str, content: bytes, status_code: int):
    with make_client() as client:
        response = _upload(client, name, content)
        assert response.status_code == status_code, response.text
        assert client.get("/documents", headers=ALICE).json()["documents"] == []


def test_upload_size_limit():
    with make_client(max_upload_size_mb=1) as client:
        response = _upload(client, "big.txt", b"a" * (1024 * 1024 + 1))
        assert response.status_code == 413


def test_user_header_is_required():
    with make_client() as client:
        assert client.get("/documents").status_code == 401
        assert client.post("/chat", json={"question": "hello"}).status_code == 401


def test_api_key_guard():
    with make_client(api_key="secret") as client:
        assert client.get("/documents", headers=ALICE).status_code == 401
        headers = {**ALICE, "X-API-Key": "secret"}
        assert client.get("/documents", headers=headers).status_code == 200


def test_chat_validates_question_length():
    with make_client() as client:
        assert client.post("/chat", json={"question": ""}, headers=ALICE).status_code == 422
        assert client.post("/chat", json={"question": "x" * 2001}, headers=ALICE).status_code == 422


def test_sessions_and_logs_endpoints():
    with make_client() as client:
        session = client.post("/chat/sessions", headers=ALICE).json()
        for question in ("hello", "thanks"):
            response = client.post("/chat", json={"question": question, "session_id": session["id"]}, headers=ALICE)
            assert response.status_code == 200

        stored = client.get(f"/chat/sessions/{session['id']}", headers=ALICE).json()
        assert [item["question"] for item in stored["messages"]] == ["hello", "thanks"]
        assert client.get(f"/chat/sessions/{session['id']}", headers=BOB).status_code == 404
        assert [item["id"] for item in client.get("/chat/sessions", headers=ALICE).json()["sessions"]] == [
            session["id"]
        ]

        for _ in range(6):
            client.post("/chat", json={"question": "hi"}, headers=ALICE)
        logs = client.get("/logs", params={"page": 1, "limit": 50}, headers=ALICE).json()
        assert logs["total"] == 8
        assert len(logs["logs"]) == 5
        assert logs["pages"] == 2

        newest = logs["logs"][0]
        assert client.get(f"/logs/{newest['id']}", headers=ALICE).json()["question"] == "hi"
        assert client.delete(f"/logs/{newest['id']}", headers=ALICE).status_code == 204
        assert client.get("/logs", headers=ALICE).json()["total"] == 7

        assert client.delete(f"/chat/sessions/{session['id']}", headers=ALICE).status_code == 204
        assert client.delete("/logs", headers=ALICE).status_code == 204
        assert client.get("/logs", headers=ALICE).json()["total"] == 0


def test_strict_session_policy_returns_not_found():
    with make_client(allow_client_session_ids=False) as client:
        response = client.post("/chat", json={"question": "hello", "session_id": "made-up"}, headers=ALICE)
        assert response.status_code == 404
        assert "correlation_id" in response.json()


def test_clear_index():
    with make_client() as client:
        _upload(client, "a.txt", b"Alpha text.")
        assert client.delete("/index").status_code == 204
        assert client.get("/index/stats").json()["vector_count"] == 0
