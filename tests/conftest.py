import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings(tmp_path: pathlib.Path):
    from assistant.config import Settings

    return Settings(
        openai_api_key="test-key",
        openai_base_url="https://upstream.example.com/v1",
        chat_db=tmp_path / "chat.db",
        enable_ai_web_search_detection=False,
        google_api_key=None,
        google_cse_id=None,
        log_dir=tmp_path / "logs",
        _env_file=None,
    )
