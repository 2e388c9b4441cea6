import asyncio
import unittest
from collections.abc import AsyncIterator

import httpx
from _support import sse_response

from unified_stream.client import LLMClient, StreamError
from unified_stream.dispatch import PROVIDER_IMPLEMENTATIONS
from unified_stream.errors import ErrorKind, UnsupportedFeatureError, UnsupportedProviderError
from unified_stream.settings import PROVIDER_NAMES, ProviderSettings, ProviderSettingsStore
from unified_stream.types import ChatRequest, FinalMessage, FIMRequest, ListModelsCallbacks, Message, StreamCallbacks, TextDelta


def text_chunk(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


class DispatchTableTests(unittest.TestCase):
    def test_every_provider_has_an_explicit_entry(self) -> None:
        self.assertEqual(set(PROVIDER_IMPLEMENTATIONS), set(PROVIDER_NAMES))
        for name, implementation in PROVIDER_IMPLEMENTATIONS.items():
            with self.subTest(provider=name):
                self.assertTrue(callable(implementation.send_chat))
                for operation in (implementation.send_fim, implementation.list_models):
                    self.assertTrue(operation is None or callable(operation))

    def test_optional_operations(self) -> None:
        fim = {name for name, impl in PROVIDER_IMPLEMENTATIONS.items() if impl.send_fim is not None}
        listing = {name for name, impl in PROVIDER_IMPLEMENTATIONS.items() if impl.list_models is not None}
        self.assertEqual(fim, {"mistral", "ollama", "openai_compatible", "openrouter", "litellm", "vllm", "lmstudio"})
        self.assertEqual(listing, {"ollama", "vllm", "lmstudio"})


class ClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.req = ChatRequest(provider="openai", model="gpt-4o", messages=[Message(role="user", content="hi")])

    def make_client(self, handler) -> LLMClient:
        return LLMClient(
            settings=ProviderSettingsStore({"openai": ProviderSettings(api_key="sk")}),
            transport=httpx.MockTransport(handler),
        )

    def test_unknown_provider_raises(self) -> None:
        client = self.make_client(lambda request: httpx.Response(500))
        with self.assertRaises(UnsupportedProviderError):
            client.get_provider("nope")
        callbacks = StreamCallbacks(lambda d: None, lambda m: None, lambda e: None)
        with self.assertRaises(UnsupportedProviderError):
            asyncio.run(client.send_chat(self.req.model_copy(update={"provider": "nope"}), callbacks))

    def test_null_operations_raise(self) -> None:
        client = self.make_client(lambda request: httpx.Response(500))
        callbacks = StreamCallbacks(lambda d: None, lambda m: None, lambda e: None)
        fim = FIMRequest(provider="anthropic", model="claude", prefix="a", suffix="b")
        with self.assertRaises(UnsupportedFeatureError):
            asyncio.run(client.send_fim(fim, callbacks))
        with self.assertRaises(UnsupportedFeatureError):
            asyncio.run(client.list_models("openai", ListModelsCallbacks(lambda m: None, lambda e: None)))

    def test_stream_yields_deltas_then_the_final_message(self) -> None:
        client = self.make_client(lambda request: sse_response([text_chunk("a"), text_chunk("b")]))
        items = asyncio.run(_collect(client.stream(self.req)))
        self.assertEqual(items, [TextDelta(full_text="a"), TextDelta(full_text="ab"), FinalMessage(full_text="ab")])

    def test_stream_raises_on_error(self) -> None:
        client = self.make_client(lambda request: httpx.Response(401))
        with self.assertRaises(StreamError) as ctx:
            asyncio.run(_collect(client.stream(self.req)))
        self.assertEqual(ctx.exception.error.kind, ErrorKind.INVALID_CREDENTIAL)

    def test_leaving_the_stream_early_aborts_the_request(self) -> None:
        client = self.make_client(lambda request: sse_response([text_chunk(t) for t in "abcd"]))

        async def first_only() -> list:
            items = []
            stream = client.stream(self.req)
            async for item in stream:
                items.append(item)
                break
            await stream.aclose()
            return items

        self.assertEqual(asyncio.run(first_only()), [TextDelta(full_text="a")])


async def _collect(stream: AsyncIterator) -> list:
    return [item async for item in stream]


if __name__ == "__main__":
    unittest.main()
