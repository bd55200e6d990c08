"""
Pytest configuration and fixtures for Vault QA backend tests.

Provides:
- Test database setup/teardown
- FastAPI test client
- Item document fixtures (clean and deliberately broken)
- OpenAI mock for deep repair tests
"""

import copy
import pytest
import os
from typing import Generator, Dict, Any, List
from unittest.mock import MagicMock, patch
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

# Set test environment before importing app
os.environ["DATABASE_URL"] = "sqlite:///./test_vaultqa.db"
os.environ["OPENAI_API_KEY"] = "test-key-not-real"

from vaultqa.main import app
from vaultqa.database import Base, get_db
from vaultqa.routers import item_qa as item_qa_router


# Test database setup
TEST_DATABASE_URL = "sqlite:///./test_vaultqa.db"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create test database tables once per test session"""
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()
    if os.path.exists("./test_vaultqa.db"):
        os.remove("./test_vaultqa.db")


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Provide a database session for each test, with rollback after"""
    connection = test_engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Provide FastAPI test client with database override and fresh scanner state"""
    def override_get_db():
        try:
            yield db
        finally:
            pass  # Don't close - let the fixture handle it

    item_qa_router.reset_state()
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    item_qa_router.reset_state()


# =========================================================================
# Item Fixtures
# =========================================================================

CLEAN_MC_ITEM: Dict[str, Any] = {
    "id": "mc-hf-0001",
    "type": "multipleChoice",
    "stem": "A client with chronic heart failure reports sudden shortness of breath and has crackles in both lung bases. Which action should the nurse take first?",
    "options": [
        {"id": "a", "text": "Raise the head of the bed to high Fowler's position"},
        {"id": "b", "text": "Obtain a 12-lead electrocardiogram"},
        {"id": "c", "text": "Weigh the client on the bedside scale"},
        {"id": "d", "text": "Encourage oral fluid intake"},
    ],
    "correctOptionId": "a",
    "scoring": {"method": "dichotomous", "maxPoints": 1},
    "pedagogy": {
        "bloomLevel": "apply",
        "cjmmStep": "takeAction",
        "nclexCategory": "Physiological Adaptation",
        "difficulty": 3,
        "topicTags": ["Heart Failure"],
    },
    "rationale": {
        "correct": (
            "Raising the head of the bed to high Fowler's position reduces venous return and lets the "
            "diaphragm descend, which eases the work of breathing right away while further assessment "
            "and treatment are arranged for this client."
        ),
        "incorrect": (
            "An electrocardiogram and a daily weight are useful once breathing is supported, but neither "
            "relieves the acute dyspnea. Extra oral fluid would worsen pulmonary congestion in a client "
            "who is already fluid overloaded."
        ),
        "reviewUnits": ["Heart failure: acute decompensation"],
        "clinicalPearls": [
            "Crackles plus orthopnea point to pulmonary congestion; position first, then oxygen and diuretics as prescribed."
        ],
        "questionTrap": {
            "trap": "Choosing a diagnostic test before a comfort-and-airway action.",
            "howToOvercome": "Ask which option changes the client's breathing in the next minute.",
        },
        "mnemonic": {
            "title": "UNLOAD FAST",
            "expansion": "Upright position, Nitrates, Lasix, Oxygen, Airway, Digoxin, Fluids restricted, "
                         "Afterload reduction, Sodium restricted, Test electrolytes",
        },
    },
}


@pytest.fixture
def clean_mc_item() -> Dict[str, Any]:
    """Multiple-choice item with zero diagnostics in every dimension"""
    return copy.deepcopy(CLEAN_MC_ITEM)


@pytest.fixture
def select_n_item() -> Dict[str, Any]:
    """Select-N item keyed with 3 answers but scored for 1 point"""
    item = copy.deepcopy(CLEAN_MC_ITEM)
    item.pop("correctOptionId")
    item.update({
        "id": "sn-hf-0002",
        "type": "selectN",
        "n": 3,
        "stem": "A client with heart failure is starting furosemide. Select the 3 findings the nurse should report to the provider.",
        "options": [
            {"id": "a", "text": "Serum potassium of 3.1 mEq/L"},
            {"id": "b", "text": "Weight gain of 2 kg in two days"},
            {"id": "c", "text": "New onset of leg cramps"},
            {"id": "d", "text": "Urine output of 60 mL per hour"},
            {"id": "e", "text": "Mild thirst after breakfast"},
        ],
        "correctOptionIds": ["a", "b", "c"],
        "scoring": {"method": "polytomous", "maxPoints": 1},
    })
    return item


@pytest.fixture
def flagged_mc_item() -> Dict[str, Any]:
    """Multiple-choice item whose answer is only marked by isCorrect flags"""
    item = copy.deepcopy(CLEAN_MC_ITEM)
    item["id"] = "mc-hf-0003"
    item.pop("correctOptionId")
    for option in item["options"]:
        option["isCorrect"] = option["id"] == "c"
    return item


def make_bank(count: int) -> List[Dict[str, Any]]:
    """count distinct copies of the clean item"""
    bank = []
    for i in range(count):
        item = copy.deepcopy(CLEAN_MC_ITEM)
        item["id"] = f"mc-bank-{i:04d}"
        bank.append(item)
    return bank


@pytest.fixture
def item_bank() -> List[Dict[str, Any]]:
    return make_bank(5)


@pytest.fixture
def bank_factory():
    """Factory for banks of arbitrary size"""
    return make_bank


# =========================================================================
# Mock Fixtures
# =========================================================================

@pytest.fixture
def mock_openai():
    """Mock OpenAI chat completions for deep repair without API costs"""
    import vaultqa.services.deep_repairer as deep_module
    import vaultqa.utils.openai_client as openai_module

    openai_module.reset_client()

    mock_response = MagicMock()
    mock_response.choices = [MagicMock()]
    mock_response.choices[0].message.content = '{"result": "mocked response"}'

    mock_instance = MagicMock()
    mock_instance.chat.completions.create.return_value = mock_response

    with patch.object(deep_module, "get_openai_client", return_value=mock_instance):
        yield mock_instance

    openai_module.reset_client()
