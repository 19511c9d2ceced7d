import pytest

from e2e_harness.playwright_client import PlaywrightClient


def test_from_settings(settings, monkeypatch):
    monkeypatch.setenv("PLAYWRIGHT_BROWSER", "firefox")
    monkeypatch.setenv("PLAYWRIGHT_SLOW_MO", "250")

    client = PlaywrightClient.from_settings(settings.with_overrides(playwright_headless=False))

    assert client.browser_type == "firefox"
    assert client.headless is False
    assert client.slow_mo == 250.0


def test_rejects_unknown_browser():
    with pytest.raises(ValueError, match="Unknown browser type"):
        PlaywrightClient(browser_type="lynx")


@pytest.mark.asyncio
async def test_unconnected_client_refuses_use():
    client = PlaywrightClient()

    for attribute in ("browser", "context", "page"):
        with pytest.raises(RuntimeError):
            getattr(client, attribute)
    with pytest.raises(RuntimeError):
        await client.new_context()

    await client.close()
