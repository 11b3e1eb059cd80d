"""API tests for /api/attempts and /api/reviews."""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from app.models.database_models import (
    Document,
    DocumentStatus,
    DocumentType,
    Node,
    Question,
    QuestionType,
    Review,
)
from tests.fakes import AUTH_HEADERS, AUTH_HEADERS_USER2

USER = AUTH_HEADERS["X-User-Id"]


@pytest_asyncio.fixture
async def question(session_factory) -> Question:
    async with session_factory() as session:
        document = Document(
            owner_id=USER,
            title="geography",
            filename="geography.txt",
            file_type=DocumentType.TXT,
            content_text="Paris is the capital of France.",
            status=DocumentStatus.COMPLETED,
        )
        node = Node(document=document, title="Capitals", level=0)
        item = Question(
            node=node,
            question_type=QuestionType.MCQ,
            question="What is the capital of France?",
            correct_answer="Paris",
            distractors=["Lyon", "Marseille", "Nice"],
            evidence_anchor="Paris is the capital of France.",
        )
        session.add_all([document, node, item])
        await session.commit()
        return item


async def _answer(client, question_id: int, answer: str, headers=AUTH_HEADERS):
    return await client.post(
        "/api/attempts/",
        json={"question_id": question_id, "answer": answer, "time_spent": 4.5},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_correct_answer_raises_mastery(client, question):
    response = await _answer(client, question.id, "Paris")

    assert response.status_code == 201
    body = response.json()
    assert body["correct"] is True
    assert body["explanation"].startswith("Correct!")
    assert "Paris is the capital of France." in body["explanation"]
    assert body["mastery_score"] == 15
    assert body["review_interval"] == 1


@pytest.mark.asyncio
async def test_grading_ignores_case_and_whitespace(client, question):
    response = await _answer(client, question.id, "  pARIS ")
    assert response.json()["correct"] is True


@pytest.mark.asyncio
async def test_incorrect_answer_floors_mastery(client, question, session_factory):
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        session.add(Review(
            node_id=question.node_id,
            user_id=USER,
            mastery_score=5,
            review_interval=1,
            last_reviewed=now - timedelta(days=1),
            next_review_date=now,
        ))
        await session.commit()

    response = await _answer(client, question.id, "Lyon")

    assert response.status_code == 201
    body = response.json()
    assert body["correct"] is False
    assert body["explanation"].startswith("Incorrect. The correct answer is: Paris.")
    assert body["correct_answer"] == "Paris"
    assert body["mastery_score"] == 0
    assert body["review_interval"] == 1


@pytest.mark.asyncio
async def test_repeated_attempts_accumulate(client, question):
    scores = []
    for _ in range(3):
        scores.append((await _answer(client, question.id, "Paris")).json()["mastery_score"])

    assert scores == [15, 30, 45]

    review = await client.get(f"/api/reviews/node/{question.node_id}", headers=AUTH_HEADERS)
    assert review.status_code == 200
    assert review.json()["mastery_score"] == 45
    assert review.json()["review_interval"] == 4


@pytest.mark.asyncio
async def test_mastery_is_tracked_per_user(client, question):
    await _answer(client, question.id, "Paris")
    await _answer(client, question.id, "Nice", headers=AUTH_HEADERS_USER2)

    mine = await client.get(f"/api/reviews/node/{question.node_id}", headers=AUTH_HEADERS)
    theirs = await client.get(f"/api/reviews/node/{question.node_id}", headers=AUTH_HEADERS_USER2)

    assert mine.json()["mastery_score"] == 15
    assert theirs.json()["mastery_score"] == 0


@pytest.mark.asyncio
async def test_blank_answer_is_rejected(client, question):
    response = await _answer(client, question.id, "   ")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_question(client):
    response = await _answer(client, 12345, "Paris")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_review_for_untouched_node(client, question):
    response = await client.get(f"/api/reviews/node/{question.node_id}", headers=AUTH_HEADERS)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_due_reviews(client, question, session_factory):
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        session.add(Review(
            node_id=question.node_id,
            user_id=USER,
            mastery_score=20,
            review_interval=2,
            last_reviewed=now - timedelta(days=3),
            next_review_date=now - timedelta(days=1),
        ))
        await session.commit()

    due = await client.get("/api/reviews/due", headers=AUTH_HEADERS)
    assert due.status_code == 200
    assert [r["node_id"] for r in due.json()] == [question.node_id]

    # Answering pushes the next review into the future.
    await _answer(client, question.id, "Paris")
    due = await client.get("/api/reviews/due", headers=AUTH_HEADERS)
    assert due.json() == []

    other = await client.get("/api/reviews/due", headers=AUTH_HEADERS_USER2)
    assert other.json() == []
