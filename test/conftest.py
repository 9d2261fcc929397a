from typing import AsyncGenerator

import pytest
import pytest_asyncio
from translation_client.backoff import BackoffPolicy
from translation_client.models import TranslatorOptions
from translation_client.translation_client import TranslationClient
from translation_server import TranslationServer

BASE_URL_TEMPLATE = "http://127.0.0.1:{}"
AUTH_KEY = "test-key:fx"
FAST_BACKOFF = BackoffPolicy(initial=0.01, maximum=0.05)


@pytest_asyncio.fixture
async def server(unused_tcp_port_factory) -> AsyncGenerator[TranslationServer, None]:
    """Start and yield a fake translation service on a random port."""
    port = unused_tcp_port_factory()
    server_instance = TranslationServer(auth_key=AUTH_KEY)
    await server_instance.start(port=port)
    try:
        yield server_instance, port
    finally:
        await server_instance.stop()


@pytest.fixture
def options(server) -> TranslatorOptions:
    """Client options pointing at the fake service, with short delays."""
    _, port = server
    return TranslatorOptions(
        server_url=BASE_URL_TEMPLATE.format(port),
        per_retry_timeout=2.0,
        max_network_retries=3,
        document_poll_interval=0.05,
        glossary_poll_interval=0.05,
        backoff=FAST_BACKOFF,
    )


@pytest_asyncio.fixture
async def client(options) -> AsyncGenerator[TranslationClient, None]:
    async with TranslationClient(AUTH_KEY, options) as translation_client:
        yield translation_client
