import asyncio
import unittest

import httpx

from unified_stream.cancellation import StreamAborter
from unified_stream.errors import (
    ConfigurationError,
    EmptyResponseError,
    ErrorKind,
    ProviderError,
    UnsupportedFeatureError,
)
from unified_stream.finalize import ResponseSink, classify_error, run_guarded
from unified_stream.settings import PROVIDER_NAMES, display_title
from unified_stream.types import FinalMessage, LLMError, TextDelta


class ClassifyErrorTests(unittest.TestCase):
    def test_unauthorized_names_the_provider_for_every_provider(self) -> None:
        for provider in PROVIDER_NAMES:
            with self.subTest(provider=provider):
                error = classify_error(provider, ProviderError(provider, "denied", status_code=401))
                self.assertEqual(error.kind, ErrorKind.INVALID_CREDENTIAL)
                self.assertIn(display_title(provider), error.message)

    def test_http_status_error_is_classified_by_status(self) -> None:
        request = httpx.Request("POST", "https://example.test")
        exc = httpx.HTTPStatusError("too many", request=request, response=httpx.Response(429, request=request))
        error = classify_error("openai", exc)
        self.assertEqual(error.kind, ErrorKind.RATE_LIMITED)
        self.assertTrue(error.message.startswith("Rate limit reached."))

    def test_message_matching_is_opt_in(self) -> None:
        exc = ProviderError("gemini", "API key not valid. Please pass a valid API key.", status_code=400)
        self.assertEqual(classify_error("gemini", exc).kind, ErrorKind.TRANSPORT)
        by_message = classify_error("gemini", exc, by_message=True)
        self.assertEqual(by_message.kind, ErrorKind.INVALID_CREDENTIAL)
        self.assertEqual(by_message.message, "Invalid Gemini API key.")

    def test_bare_429_in_text_only_counts_for_message_matching(self) -> None:
        exc = ProviderError("openai", "upstream failed for request req_84291429", status_code=500)
        self.assertEqual(classify_error("openai", exc).kind, ErrorKind.TRANSPORT)

        quota = ProviderError("gemini", "[429 Too Many Requests] Resource exhausted")
        self.assertEqual(classify_error("gemini", quota).kind, ErrorKind.TRANSPORT)
        self.assertEqual(classify_error("gemini", quota, by_message=True).kind, ErrorKind.RATE_LIMITED)

        worded = ProviderError("openai", "Rate limit exceeded for this organization")
        self.assertEqual(classify_error("openai", worded).kind, ErrorKind.RATE_LIMITED)

    def test_package_errors_keep_their_kind(self) -> None:
        cases = [
            (ConfigurationError("missing endpoint"), ErrorKind.CONFIGURATION),
            (UnsupportedFeatureError("fim"), ErrorKind.UNSUPPORTED),
            (EmptyResponseError(), ErrorKind.EMPTY_RESPONSE),
            (ValueError("boom"), ErrorKind.TRANSPORT),
        ]
        for exc, kind in cases:
            with self.subTest(exc=exc):
                error = classify_error("openai", exc)
                self.assertEqual(error.kind, kind)
                self.assertIs(error.full_error, exc)


class StreamAborterTests(unittest.TestCase):
    def test_abort_before_attach_is_applied_on_attach(self) -> None:
        calls: list[str] = []
        aborter = StreamAborter()
        aborter()
        self.assertTrue(aborter.aborted)
        aborter.attach(lambda: calls.append("cancel"))
        self.assertEqual(calls, ["cancel"])

    def test_abort_is_idempotent(self) -> None:
        calls: list[str] = []
        aborter = StreamAborter()
        aborter.attach(lambda: calls.append("cancel"))
        aborter()
        aborter()
        self.assertEqual(calls, ["cancel"])

    def test_abort_after_finish_is_a_no_op(self) -> None:
        calls: list[str] = []
        aborter = StreamAborter()
        aborter.attach(lambda: calls.append("cancel"))
        aborter.finish()
        aborter()
        self.assertEqual(calls, [])
        self.assertFalse(aborter.aborted)


class _Collector:
    def __init__(self) -> None:
        self.texts: list[TextDelta] = []
        self.finals: list[FinalMessage] = []
        self.errors: list[LLMError] = []

    def sink(self, provider: str = "openai") -> ResponseSink:
        return ResponseSink(provider, self.texts.append, self.finals.append, self.errors.append, StreamAborter())


class ResponseSinkTests(unittest.TestCase):
    def test_only_the_first_terminal_call_is_delivered(self) -> None:
        collector = _Collector()
        sink = collector.sink()
        sink.final(FinalMessage(full_text="done"))
        sink.error(LLMError(message="late"))
        sink.final(FinalMessage(full_text="again"))
        sink.text(TextDelta(full_text="late text"))
        self.assertEqual([m.full_text for m in collector.finals], ["done"])
        self.assertEqual(collector.errors, [])
        self.assertEqual(collector.texts, [])

    def test_abort_turns_errors_into_an_empty_final(self) -> None:
        collector = _Collector()
        sink = collector.sink()
        sink.text(TextDelta(full_text="a"))
        sink.aborter()
        sink.text(TextDelta(full_text="ab"))
        sink.fail(RuntimeError("connection reset"))
        self.assertEqual(len(collector.texts), 1)
        self.assertEqual(collector.finals, [FinalMessage()])
        self.assertEqual(collector.errors, [])

    def test_run_guarded_reports_exceptions_once(self) -> None:
        collector = _Collector()
        sink = collector.sink("anthropic")

        async def body() -> None:
            raise ProviderError("anthropic", "bad key", status_code=401)

        asyncio.run(run_guarded(sink, body))
        self.assertEqual(len(collector.errors), 1)
        self.assertEqual(collector.errors[0].message, "Invalid Anthropic API key.")
        self.assertEqual(collector.finals, [])

    def test_run_guarded_cancels_the_body_not_the_caller(self) -> None:
        collector = _Collector()
        sink = collector.sink()
        reached_end: list[bool] = []

        async def body() -> None:
            sink.aborter.attach_current_task()
            sink.text(TextDelta(full_text="partial"))
            sink.aborter()
            await asyncio.sleep(1)
            reached_end.append(True)

        async def caller() -> str:
            await run_guarded(sink, body)
            await asyncio.sleep(0)
            return "caller survived"

        self.assertEqual(asyncio.run(caller()), "caller survived")
        self.assertEqual(reached_end, [])
        self.assertEqual(collector.finals, [FinalMessage()])
        self.assertEqual(collector.errors, [])

    def test_run_guarded_closes_a_silent_body(self) -> None:
        collector = _Collector()
        sink = collector.sink()

        async def body() -> None:
            return None

        asyncio.run(run_guarded(sink, body))
        self.assertEqual(collector.finals, [FinalMessage()])


if __name__ == "__main__":
    unittest.main()
