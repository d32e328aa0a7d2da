import asyncio
import unittest
from types import SimpleNamespace

from relaybot.chat.errors import AllCredentialsExhausted
from relaybot.chat.history import Turn
from relaybot.llm.credentials import CredentialPool
from relaybot.llm.model_service import ModelService, build_extra_body, to_openai_messages


def completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


class FakeCompletions:
    def __init__(self, key, behaviour, calls):
        self.key = key
        self.behaviour = behaviour
        self.calls = calls

    async def create(self, **kwargs):
        self.calls.append((self.key, kwargs))
        outcome = self.behaviour[self.key]
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == "hang":
            await asyncio.sleep(10)
        return completion(outcome)


def fake_client(key, behaviour, calls):
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(key, behaviour, calls)))


class TestMessageBuilding(unittest.TestCase):
    def test_roles_and_system_prompt(self):
        history = [Turn("user", [{"type": "text", "text": "q"}]), Turn("model", [{"type": "text", "text": "a"}])]
        new = Turn("user", [{"type": "text", "text": "q2"}])
        messages = to_openai_messages(history, new, "be brief")
        self.assertEqual([m["role"] for m in messages], ["system", "user", "assistant", "user"])
        self.assertEqual(messages[2]["content"], "a")
        self.assertEqual(messages[3]["content"], [{"type": "text", "text": "q2"}])

    def test_extra_body_merges_grounding_only_when_requested(self):
        cfg = {"extra_body": {"a": 1}, "grounding_extra_body": {"tools": [{"google_search": {}}]}}
        self.assertEqual(build_extra_body(cfg, False), {"a": 1})
        self.assertEqual(build_extra_body(cfg, True), {"a": 1, "tools": [{"google_search": {}}]})
        self.assertIsNone(build_extra_body({}, True))


class TestModelService(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.behaviour = {}
        self.calls = []
        pool = CredentialPool(lambda key: fake_client(key, self.behaviour, self.calls))
        self.service = ModelService({"base_url": "http://test/"}, model="m", pool=pool, timeout=0.05)
        self.turn = Turn("user", [{"type": "text", "text": "hi"}])

    async def test_generate_strips_text(self):
        self.behaviour["k1"] = "  answer \n"
        reply = await self.service.generate(["k1"], [], self.turn, use_grounding=True)
        self.assertEqual(reply.text, "answer")
        self.assertTrue(reply.used_grounding)
        self.assertEqual(self.calls[0][1]["model"], "m")

    async def test_failover_on_error_and_timeout(self):
        self.behaviour.update({"k1": RuntimeError("429 Too Many Requests"), "k2": "hang", "k3": "ok"})
        reply = await self.service.generate(["k1", "k2", "k3"], [], self.turn)
        self.assertEqual(reply.text, "ok")
        self.assertEqual([c[0] for c in self.calls], ["k1", "k2", "k3"])
        self.assertEqual(self.service.pool.cursor, 0)

    async def test_all_keys_fail(self):
        self.behaviour.update({"k1": RuntimeError("401 Unauthorized")})
        with self.assertRaises(AllCredentialsExhausted):
            await self.service.generate(["k1"], [], self.turn)


if __name__ == "__main__":
    unittest.main()
