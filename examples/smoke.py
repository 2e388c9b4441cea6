import asyncio

from unified_stream.client import LLMClient, StreamError
from unified_stream.errors import UnsupportedFeatureError
from unified_stream.settings import ProviderSettings, ProviderSettingsStore
from unified_stream.types import ChatRequest, FIMRequest, Message, StreamCallbacks


async def main() -> None:
    client = LLMClient(
        settings=ProviderSettingsStore(
            {
                "openai": ProviderSettings(api_key="DUMMY"),
                "anthropic": ProviderSettings(api_key="DUMMY"),
            }
        )
    )

    # Demonstrate operation gating (Anthropic has no fill-in-middle)
    fim = FIMRequest(provider="anthropic", model="claude-sonnet-4-5", prefix="def f(", suffix=")")
    callbacks = StreamCallbacks(on_text=print, on_final_message=print, on_error=print)
    try:
        await client.send_fim(fim, callbacks)
    except UnsupportedFeatureError as e:
        print("Expected error:", type(e).__name__, e)

    # A dummy key surfaces as an invalid-credential error, not an exception from send_chat
    req = ChatRequest(provider="openai", model="gpt-4o", messages=[Message(role="user", content="hi")])
    try:
        async for item in client.stream(req):
            print(item)
    except StreamError as e:
        print("Expected error:", e.error.kind.value, e.error.message)


if __name__ == "__main__":
    asyncio.run(main())
