from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

import stdborg


@pytest.fixture
def env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OPEN_AI_TOKEN", "sk-test")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'chatborg.db'}")
    return monkeypatch


@pytest.mark.asyncio
async def test_image_clients_are_closed_when_login_fails(env):
    images = SimpleNamespace(aclose=AsyncMock())
    env.setattr(stdborg, "build_image_client", lambda config: images)
    borg_init = AsyncMock(side_effect=ConnectionError("login failed"))
    env.setattr(stdborg, "borg_init", borg_init)

    assert await stdborg.main() == 1

    borg_init.assert_awaited_once()
    assert borg_init.await_args.args[2] is images
    images.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_missing_configuration_exits_with_error(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("OPEN_AI_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)

    assert await stdborg.main() == 1


def test_build_image_client_shares_one_openai_provider():
    config = SimpleNamespace(open_ai_token="sk-test", replicate_api_token=None)

    images = stdborg.build_image_client(config)

    assert images.models == ["dall-e-2", "dall-e-3"]
    assert images.providers["dall-e-2"] is images.providers["dall-e-3"]


def test_build_image_client_adds_replicate_with_a_token():
    config = SimpleNamespace(open_ai_token="sk-test", replicate_api_token="r8-test")

    images = stdborg.build_image_client(config)

    assert "flux-1.1-pro-ultra" in images.models
