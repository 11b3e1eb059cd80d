"""Tests for flashcard generation, lookup and study, service and API."""
import pytest
import pytest_asyncio

from app.models.database_models import Document, DocumentStatus, DocumentType, Node
from app.services.errors import (
    DocumentNotFoundError,
    DocumentNotReadyError,
    FlashcardNotFoundError,
)
from app.services.flashcards import (
    FlashcardGenerator,
    FlashcardStudyService,
    fallback_card,
    parse_cards,
)
from app.services.mastery import MasteryScheduler
from tests.fakes import AUTH_HEADERS, AUTH_HEADERS_USER2, ENGLISH_TEXT, FLASHCARDS, FakeLLM, as_json

USER = AUTH_HEADERS["X-User-Id"]


async def _seed_document(session_factory, status=DocumentStatus.COMPLETED) -> int:
    async with session_factory() as session:
        document = Document(
            owner_id=USER,
            title="photosynthesis",
            filename="photosynthesis.txt",
            file_type=DocumentType.TXT,
            content_text=ENGLISH_TEXT,
            status=status,
        )
        root = Node(document=document, title="Photosynthesis",
                    summary="Plants turn light into chemical energy.", level=0)
        light = Node(document=document, parent=root, title="Light-dependent reactions",
                     summary="Thylakoids make ATP and NADPH.", level=1)
        calvin = Node(document=document, parent=root, title="Calvin cycle",
                      summary="Carbon fixation in the stroma.", level=1)
        rubisco = Node(document=document, parent=calvin, title="RuBisCO", summary=None, level=2)
        session.add_all([document, root, light, calvin, rubisco])
        await session.commit()
        return document.id


@pytest_asyncio.fixture
async def document_id(session_factory) -> int:
    return await _seed_document(session_factory)


async def _generate(session_factory, generator, document_id, owner=USER, **kwargs):
    async with session_factory() as session:
        result = await generator.generate_for_document(session, document_id, owner, **kwargs)
        await session.commit()
    return result


async def _node_titles(session_factory, cards):
    async with session_factory() as session:
        return [(await session.get(Node, c.node_id)).title for c in cards]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def test_parse_cards_normalizes_difficulty_and_category():
    cards = parse_cards(as_json(FLASHCARDS, fenced=True))

    assert len(cards) == 4
    assert cards[0].node_ref == "Light-dependent reactions"
    assert (cards[0].difficulty, cards[0].category) == ("easy", "process")
    assert cards[2].difficulty == "medium"


def test_parse_cards_accepts_bare_list_and_alternate_key():
    item = {"front": "Q?", "back": "A.", "category": "trivia"}

    from_list = parse_cards(as_json([item]))
    from_key = parse_cards(as_json({"flashcards": [item]}))

    assert [c.front for c in from_list] == [c.front for c in from_key] == ["Q?"]
    assert from_list[0].category == "concept"


@pytest.mark.parametrize("raw", ["", "no cards today", '{"cards": "none"}'])
def test_parse_cards_failure(raw):
    assert parse_cards(raw) == []


def test_fallback_card_uses_title_and_summary():
    node = Node(id=3, title="Calvin cycle", summary="Carbon fixation.", level=1)
    card = fallback_card(node)

    assert card.front == "What is Calvin cycle?"
    assert card.back == "Carbon fixation."
    assert card.difficulty == "medium"


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_attaches_cards_to_named_concepts(session_factory, document_id):
    llm = FakeLLM(flashcards=as_json(FLASHCARDS))
    result = await _generate(session_factory, FlashcardGenerator(llm), document_id)

    assert result.used_fallback is False
    assert result.rejected == 1
    assert await _node_titles(session_factory, result.cards) == [
        "Light-dependent reactions",
        "Calvin cycle",
        "RuBisCO",
    ]
    assert all(c.metadata_json == {"ai_generated": True, "fallback": False} for c in result.cards)

    prompt, _system = llm.calls[0]
    assert "Calvin cycle: Carbon fixation in the stroma." in prompt
    assert "- RuBisCO" in prompt


@pytest.mark.asyncio
async def test_generate_respects_card_count(session_factory, document_id):
    llm = FakeLLM(flashcards=as_json(FLASHCARDS))
    result = await _generate(session_factory, FlashcardGenerator(llm), document_id, card_count=2)

    assert len(result.cards) == 2
    assert "up to 2 flashcards" in llm.calls[0][0]


@pytest.mark.asyncio
async def test_regeneration_skips_existing_cards(session_factory, document_id):
    generator = FlashcardGenerator(FakeLLM(flashcards=as_json(FLASHCARDS)))
    await _generate(session_factory, generator, document_id)

    again = await _generate(session_factory, generator, document_id)

    assert again.cards == []
    assert again.used_fallback is False
    async with session_factory() as session:
        assert len(await generator.get_document_cards(session, document_id, USER)) == 3


@pytest.mark.asyncio
async def test_model_outage_falls_back_to_one_card_per_node(session_factory, document_id):
    result = await _generate(session_factory, FlashcardGenerator(FakeLLM()), document_id)

    assert result.used_fallback is True
    assert [c.front for c in result.cards] == [
        "What is Photosynthesis?",
        "What is Light-dependent reactions?",
        "What is Calvin cycle?",
        "What is RuBisCO?",
    ]
    assert [c.difficulty for c in result.cards] == ["easy", "medium", "medium", "hard"]
    assert result.cards[-1].back == "RuBisCO"
    assert all(c.metadata_json["fallback"] for c in result.cards)


@pytest.mark.asyncio
async def test_generate_requires_completed_owned_document(session_factory):
    processing_id = await _seed_document(session_factory, DocumentStatus.PROCESSING)
    completed_id = await _seed_document(session_factory)
    generator = FlashcardGenerator(FakeLLM(flashcards=as_json(FLASHCARDS)))

    async with session_factory() as session:
        with pytest.raises(DocumentNotReadyError):
            await generator.generate_for_document(session, processing_id, USER)
        with pytest.raises(DocumentNotFoundError):
            await generator.generate_for_document(session, completed_id, "someone-else")
        with pytest.raises(DocumentNotFoundError):
            await generator.generate_for_document(session, 9999, USER)


# ---------------------------------------------------------------------------
# Study
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_study_updates_mastery_of_the_cards_node(session_factory, document_id):
    generator = FlashcardGenerator(FakeLLM(flashcards=as_json(FLASHCARDS)))
    card = (await _generate(session_factory, generator, document_id)).cards[0]
    service = FlashcardStudyService(MasteryScheduler(session_factory), generator)

    async with session_factory() as session:
        first = await service.study(session, card.id, USER, True)
        second = await service.study(session, card.id, USER, False)

    assert (first.mastery_score, first.message) == (15, "Correct!")
    assert (second.mastery_score, second.message) == (5, "Keep studying!")
    assert second.node_id == card.node_id

    async with session_factory() as session:
        review = await MasteryScheduler(session_factory).get_review(session, card.node_id, USER)
    assert review.mastery_score == 5


@pytest.mark.asyncio
async def test_cards_are_private_to_their_owner(session_factory, document_id):
    generator = FlashcardGenerator(FakeLLM(flashcards=as_json(FLASHCARDS)))
    card = (await _generate(session_factory, generator, document_id)).cards[0]
    service = FlashcardStudyService(MasteryScheduler(session_factory), generator)

    async with session_factory() as session:
        with pytest.raises(FlashcardNotFoundError):
            await generator.get_card(session, card.id, "someone-else")
        with pytest.raises(FlashcardNotFoundError):
            await service.study(session, card.id, "someone-else", True)
        assert await generator.get_document_cards(session, document_id, "someone-else") == []


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_list_get_and_study_over_http(client, document_id):
    generated = await client.post(
        "/api/flashcards/generate",
        json={"document_id": document_id, "card_count": 10},
        headers=AUTH_HEADERS,
    )
    assert generated.status_code == 201
    body = generated.json()
    assert body["total_cards"] == 3
    assert body["used_fallback"] is False
    card = body["cards"][0]
    assert card["front"] == "Where do the light-dependent reactions happen?"

    deck = await client.get(f"/api/flashcards/document/{document_id}", headers=AUTH_HEADERS)
    assert deck.status_code == 200
    assert [c["id"] for c in deck.json()["cards"]] == [c["id"] for c in body["cards"]]

    single = await client.get(f"/api/flashcards/{card['id']}", headers=AUTH_HEADERS)
    assert single.status_code == 200
    assert single.json()["back"] == "In the thylakoid membranes."

    studied = await client.post(
        f"/api/flashcards/{card['id']}/study", json={"correct": True}, headers=AUTH_HEADERS
    )
    assert studied.status_code == 200
    assert studied.json()["mastery_score"] == 15
    assert studied.json()["message"] == "Correct!"
    assert studied.json()["node_id"] == card["node_id"]


@pytest.mark.asyncio
async def test_flashcard_endpoints_hide_other_users_cards(client, document_id):
    generated = await client.post(
        "/api/flashcards/generate", json={"document_id": document_id}, headers=AUTH_HEADERS
    )
    card_id = generated.json()["cards"][0]["id"]

    single = await client.get(f"/api/flashcards/{card_id}", headers=AUTH_HEADERS_USER2)
    studied = await client.post(
        f"/api/flashcards/{card_id}/study", json={"correct": True}, headers=AUTH_HEADERS_USER2
    )
    deck = await client.get(f"/api/flashcards/document/{document_id}", headers=AUTH_HEADERS_USER2)
    other_generate = await client.post(
        "/api/flashcards/generate", json={"document_id": document_id}, headers=AUTH_HEADERS_USER2
    )

    assert single.status_code == 404
    assert studied.status_code == 404
    assert deck.json()["cards"] == []
    assert other_generate.status_code == 404


@pytest.mark.asyncio
async def test_generate_for_processing_document_conflicts(client, session_factory):
    processing_id = await _seed_document(session_factory, DocumentStatus.PROCESSING)

    response = await client.post(
        "/api/flashcards/generate", json={"document_id": processing_id}, headers=AUTH_HEADERS
    )

    assert response.status_code == 409


@pytest.mark.asyncio
@pytest.mark.parametrize("card_count", [0, 51])
async def test_generate_rejects_out_of_range_card_count(client, document_id, card_count):
    response = await client.post(
        "/api/flashcards/generate",
        json={"document_id": document_id, "card_count": card_count},
        headers=AUTH_HEADERS,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_flashcards_require_user_header(client, document_id):
    response = await client.post("/api/flashcards/generate", json={"document_id": document_id})
    assert response.status_code == 401
