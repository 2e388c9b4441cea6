import asyncio
import json
import unittest

import httpx
from _support import Recorder, RequestLog, make_context

from unified_stream.capabilities import StaticCapabilityResolver
from unified_stream.errors import ErrorKind
from unified_stream.providers import mistral, ollama, openai_compatible
from unified_stream.settings import ProviderSettings
from unified_stream.types import FIMRequest, FinalMessage, ListModelsCallbacks

MISTRAL_SETTINGS = {"mistral": ProviderSettings(api_key="m-key")}


def fim_request(provider: str, model: str) -> FIMRequest:
    return FIMRequest(provider=provider, model=model, prefix="def add(a, b):\n    ", suffix="\n", stop_tokens=["\n\n"])


class MistralFIMTests(unittest.TestCase):
    def test_completion_text(self) -> None:
        log = RequestLog(
            lambda request: httpx.Response(200, json={"choices": [{"message": {"content": "return a + b"}}]})
        )
        recorder = Recorder()
        ctx = make_context(log, MISTRAL_SETTINGS)
        asyncio.run(mistral.send_fim(ctx, fim_request("mistral", "codestral-latest"), recorder.callbacks()))

        self.assertEqual(recorder.finals, [FinalMessage(full_text="return a + b")])
        self.assertEqual(str(log.requests[0].url), "https://api.mistral.ai/v1/fim/completions")
        payload = log.json()
        self.assertEqual(payload["max_tokens"], 300)
        self.assertFalse(payload["stream"])
        self.assertEqual(payload["stop"], ["\n\n"])

    def test_chunked_content(self) -> None:
        data = {"choices": [{"message": {"content": [{"type": "text", "text": "a"}, {"type": "x"}, {"type": "text", "text": "b"}]}}]}
        self.assertEqual(mistral.completion_text(data), "ab")

    def test_unsupported_model_fails_before_the_request(self) -> None:
        log = RequestLog(lambda request: httpx.Response(500))
        recorder = Recorder()
        asyncio.run(
            mistral.send_fim(make_context(log, MISTRAL_SETTINGS), fim_request("mistral", "mistral-large"), recorder.callbacks())
        )
        self.assertEqual(recorder.errors[0].kind, ErrorKind.UNSUPPORTED)
        self.assertEqual(recorder.errors[0].message, "Model mistral-large does not support FIM.")
        self.assertEqual(log.requests, [])

    def test_unsupported_message_names_both_models(self) -> None:
        resolver = StaticCapabilityResolver({"mistral": {"my-alias": {"model_name": "mistral-large-latest"}}})
        recorder = Recorder()
        ctx = make_context(RequestLog(lambda request: httpx.Response(500)), MISTRAL_SETTINGS, capabilities=resolver)
        asyncio.run(mistral.send_fim(ctx, fim_request("mistral", "my-alias"), recorder.callbacks()))
        self.assertEqual(recorder.errors[0].message, "Model my-alias (mistral-large-latest) does not support FIM.")


class OllamaTests(unittest.TestCase):
    def test_fim_streams_newline_delimited_json(self) -> None:
        lines = [{"response": "return "}, {"response": "a + b"}, {"response": "", "done": True}]
        body = "".join(json.dumps(line) + "\n" for line in lines)
        log = RequestLog(lambda request: httpx.Response(200, content=body.encode()))
        recorder = Recorder()
        asyncio.run(ollama.send_fim(make_context(log), fim_request("ollama", "qwen2.5-coder:7b"), recorder.callbacks()))

        self.assertEqual(recorder.finals, [FinalMessage(full_text="return a + b")])
        self.assertEqual(str(log.requests[0].url), "http://127.0.0.1:11434/api/generate")
        payload = log.json()
        self.assertTrue(payload["raw"])
        self.assertEqual(payload["options"], {"stop": ["\n\n"], "num_predict": 300})

    def test_empty_endpoint_is_a_configuration_error(self) -> None:
        log = RequestLog(lambda request: httpx.Response(500))
        recorder = Recorder()
        ctx = make_context(log, {"ollama": ProviderSettings(endpoint="")})
        asyncio.run(ollama.send_fim(ctx, fim_request("ollama", "qwen2.5-coder:7b"), recorder.callbacks()))
        self.assertEqual(recorder.errors[0].kind, ErrorKind.CONFIGURATION)
        self.assertEqual(log.requests, [])

    def test_list_models(self) -> None:
        tags = {"models": [{"name": "llama3:latest", "model": "llama3:latest", "size": 1}]}
        log = RequestLog(lambda request: httpx.Response(200, json=tags))
        models: list = []
        errors: list = []
        asyncio.run(ollama.list_models(make_context(log), "ollama", ListModelsCallbacks(models.append, errors.append)))

        self.assertEqual(errors, [])
        self.assertEqual([(m.id, m.name) for m in models[0]], [("llama3:latest", "llama3:latest")])
        self.assertEqual(log.requests[0].url.path, "/api/tags")

    def test_list_models_unparsable_response(self) -> None:
        log = RequestLog(lambda request: httpx.Response(200, content=b"<html>"))
        models: list = []
        errors: list = []
        asyncio.run(ollama.list_models(make_context(log), "ollama", ListModelsCallbacks(models.append, errors.append)))
        self.assertEqual(models, [])
        self.assertEqual(len(errors), 1)


class OpenAICompletionsFIMTests(unittest.TestCase):
    def test_completions_endpoint(self) -> None:
        log = RequestLog(lambda request: httpx.Response(200, json={"choices": [{"text": "return a + b"}]}))
        recorder = Recorder()
        ctx = make_context(log, {"openai_compatible": ProviderSettings(endpoint="http://local:8080/v1")})
        asyncio.run(
            openai_compatible.send_fim(ctx, fim_request("openai_compatible", "starcoder2"), recorder.callbacks())
        )
        self.assertEqual(recorder.finals, [FinalMessage(full_text="return a + b")])
        self.assertEqual(str(log.requests[0].url), "http://local:8080/v1/completions")
        payload = log.json()
        self.assertEqual((payload["prompt"], payload["suffix"], payload["max_tokens"]), ("def add(a, b):\n    ", "\n", 300))


if __name__ == "__main__":
    unittest.main()
