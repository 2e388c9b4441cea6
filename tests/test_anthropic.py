import asyncio
import unittest

import httpx
from _support import READ_FILE, Recorder, RequestLog, make_context, sse_response

from unified_stream.errors import ErrorKind
from unified_stream.providers import anthropic
from unified_stream.settings import ProviderSettings
from unified_stream.types import ChatRequest, FinalMessage, Message

SETTINGS = {"anthropic": ProviderSettings(api_key="sk-ant")}


def start(index: int, block: dict) -> dict:
    return {"type": "content_block_start", "index": index, "content_block": block}


def delta(index: int, **fields) -> dict:
    return {"type": "content_block_delta", "index": index, "delta": fields}


def stop(index: int) -> dict:
    return {"type": "content_block_stop", "index": index}


MESSAGE_START = {"type": "message_start", "message": {"id": "msg_1", "content": []}}
MESSAGE_STOP = {"type": "message_stop"}


def text_events(*fragments: str) -> list[dict]:
    events = [MESSAGE_START, start(0, {"type": "text", "text": ""})]
    events += [delta(0, type="text_delta", text=fragment) for fragment in fragments]
    return events + [stop(0), {"type": "message_delta", "delta": {"stop_reason": "end_turn"}}, MESSAGE_STOP]


def chat_request(**kwargs) -> ChatRequest:
    return ChatRequest(
        provider="anthropic",
        model="claude-sonnet-4-5",
        messages=[Message(role="system", content="be brief"), Message(role="user", content="hi")],
        **kwargs,
    )


class AnthropicChatTests(unittest.TestCase):
    def run_chat(self, log, request=None, recorder=None, **ctx_kwargs) -> Recorder:
        recorder = recorder or Recorder()
        ctx = make_context(log, SETTINGS, **ctx_kwargs)
        asyncio.run(anthropic.send_chat(ctx, request or chat_request(), recorder.callbacks()))
        return recorder

    def test_text_fragments_and_request_shape(self) -> None:
        log = RequestLog(lambda request: sse_response(text_events("Hel", "lo", "!"), done=False))
        recorder = self.run_chat(log, request=chat_request(separate_system_message="sys"))

        self.assertEqual(recorder.full_texts, ["Hel", "Hello", "Hello!"])
        self.assertEqual(len(recorder.finals), 1)
        self.assertEqual(recorder.finals[0].full_text, "Hello!")
        self.assertEqual(recorder.finals[0].provider_reasoning, [])

        sent = log.requests[0]
        self.assertEqual(str(sent.url), "https://api.anthropic.com/v1/messages")
        self.assertEqual(sent.headers["x-api-key"], "sk-ant")
        self.assertEqual(sent.headers["anthropic-version"], "2023-06-01")
        payload = log.json()
        self.assertEqual(payload["system"], "sys\n\nbe brief")
        self.assertEqual(payload["messages"], [{"role": "user", "content": "hi"}])
        self.assertEqual(payload["max_tokens"], 8192)
        self.assertNotIn("tools", payload)

    def test_thinking_blocks_and_tool_use(self) -> None:
        events = [
            MESSAGE_START,
            start(0, {"type": "thinking", "thinking": ""}),
            delta(0, type="thinking_delta", thinking="Need the file."),
            delta(0, type="signature_delta", signature="sig"),
            stop(0),
            start(1, {"type": "redacted_thinking", "data": "opaque"}),
            stop(1),
            start(2, {"type": "text", "text": "Reading"}),
            stop(2),
            start(3, {"type": "text", "text": "now"}),
            stop(3),
            start(4, {"type": "tool_use", "id": "toolu_1", "name": "read_file", "input": {}}),
            delta(4, type="input_json_delta", partial_json='{"uri": '),
            delta(4, type="input_json_delta", partial_json='"a.py"}'),
            stop(4),
            MESSAGE_STOP,
        ]
        log = RequestLog(lambda request: sse_response(events, done=False))
        request = chat_request(chat_mode="agent", reasoning={"type": "budget", "budget": 2048})
        recorder = self.run_chat(log, request=request, tools=[READ_FILE])

        final = recorder.finals[0]
        self.assertEqual(final.full_reasoning, "Need the file.\n\n[redacted_thinking]")
        self.assertEqual(final.full_text, "Reading\n\nnow")
        assert final.provider_reasoning is not None
        self.assertEqual(
            final.provider_reasoning,
            [
                {"type": "thinking", "thinking": "Need the file.", "signature": "sig"},
                {"type": "redacted_thinking", "data": "opaque"},
            ],
        )
        assert final.tool_call is not None
        self.assertEqual(final.tool_call.id, "toolu_1")
        self.assertEqual(final.tool_call.raw_params, {"uri": "a.py"})
        self.assertEqual(final.tool_call.done_params, ["uri"])

        streaming_call = recorder.texts[-1].tool_call
        assert streaming_call is not None
        self.assertEqual((streaming_call.id, streaming_call.is_done), ("toolu_1", False))

        payload = log.json()
        self.assertEqual(payload["thinking"], {"type": "enabled", "budget_tokens": 2048})
        self.assertEqual(payload["max_tokens"], 16384)
        self.assertEqual(payload["tool_choice"], {"type": "auto"})
        self.assertEqual(payload["tools"][0]["input_schema"]["properties"]["uri"]["type"], "string")

    def test_invalid_tool_input_drops_the_call(self) -> None:
        events = [
            MESSAGE_START,
            start(0, {"type": "tool_use", "id": "toolu_1", "name": "read_file", "input": {}}),
            delta(0, type="input_json_delta", partial_json='{"uri": '),
            stop(0),
            MESSAGE_STOP,
        ]
        recorder = self.run_chat(RequestLog(lambda request: sse_response(events, done=False)))
        self.assertEqual(recorder.errors, [])
        self.assertIsNone(recorder.finals[0].tool_call)

    def test_error_event_is_classified(self) -> None:
        events = [
            MESSAGE_START,
            {"type": "error", "error": {"type": "rate_limit_error", "message": "Slow down"}},
        ]
        recorder = self.run_chat(RequestLog(lambda request: sse_response(events, done=False)))
        self.assertEqual(recorder.finals, [])
        self.assertEqual(recorder.errors[0].kind, ErrorKind.RATE_LIMITED)

    def test_unauthorized(self) -> None:
        log = RequestLog(lambda request: httpx.Response(401, json={"type": "error"}))
        recorder = self.run_chat(log)
        self.assertEqual(recorder.errors[0].kind, ErrorKind.INVALID_CREDENTIAL)
        self.assertIn("Anthropic", recorder.errors[0].message)

    def test_empty_message_is_an_error(self) -> None:
        events = [MESSAGE_START, start(0, {"type": "text", "text": ""}), stop(0), MESSAGE_STOP]
        recorder = self.run_chat(RequestLog(lambda request: sse_response(events, done=False)))
        self.assertEqual(recorder.texts, [])
        self.assertEqual(recorder.errors[0].kind, ErrorKind.EMPTY_RESPONSE)

    def test_cancel_mid_stream(self) -> None:
        recorder = Recorder(abort_after=2)
        self.run_chat(
            RequestLog(lambda request: sse_response(text_events("a", "b", "c", "d"), done=False)),
            recorder=recorder,
        )
        self.assertEqual(recorder.full_texts, ["a", "ab"])
        self.assertEqual(recorder.finals, [FinalMessage()])
        self.assertEqual(recorder.errors, [])

    def test_missing_key_fails_before_the_request(self) -> None:
        log = RequestLog(lambda request: httpx.Response(500))
        recorder = Recorder()
        ctx = make_context(log, {"anthropic": ProviderSettings()})
        asyncio.run(anthropic.send_chat(ctx, chat_request(), recorder.callbacks()))
        self.assertEqual(recorder.errors[0].kind, ErrorKind.CONFIGURATION)
        self.assertEqual(log.requests, [])


if __name__ == "__main__":
    unittest.main()
