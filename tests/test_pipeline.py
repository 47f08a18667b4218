import unittest

from backend import pipeline as PL
from backend import session_memory as sm
from backend.completion import CompletionError
from backend.grounding import DEFAULT_PRICING
from backend.tenant_models import TenantConfig


def _config(**raw):
    return TenantConfig.load(raw, "test")


class FakeProvider:
    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = []

    def complete(self, model, system_prompt, few_shot, prior_turns, user_message):
        self.calls.append({
            "model": model,
            "system_prompt": system_prompt,
            "few_shot": list(few_shot),
            "prior_turns": list(prior_turns),
            "user_message": user_message,
        })
        ans = self.answers.pop(0) if self.answers else ""
        if isinstance(ans, Exception):
            raise ans
        return ans


PRICING_FAQ = {"a": "We charge $35/mo", "keywords": ["pricing"]}
REFUND_FAQ = {"q": "Do you offer refunds?", "a": "Refunds are available within 30 days.", "keywords": ["refund"]}


class TestScenarios(unittest.TestCase):
    def test_pricing_faq_answered_by_semantic_stage(self):
        cfg = _config(faqs=[PRICING_FAQ])
        decision = PL.resolve_decision(cfg, sm.SessionState(), "what's your pricing?", FakeProvider())
        self.assertEqual(decision.reply, "We charge $35/mo")
        self.assertEqual(decision.stage, PL.SEMANTIC)

    def test_default_pricing_line_from_guardrail(self):
        cfg = _config(faqs=[REFUND_FAQ])
        provider = FakeProvider()
        decision = PL.resolve_decision(cfg, sm.SessionState(), "how much does it cost", provider)
        self.assertEqual(decision.reply, DEFAULT_PRICING)
        self.assertEqual(decision.stage, PL.PRICING)
        self.assertEqual(provider.calls, [])

    def test_recall_last_assistant_turn(self):
        state = sm.SessionState()
        sm.append_turn(state, sm.USER, "how do I set this up?")
        sm.append_turn(state, sm.ASSISTANT, "Try our install guide")
        decision = PL.resolve_decision(_config(), state, "what was your last message?", FakeProvider())
        self.assertEqual(decision.reply, 'My last message was: "Try our install guide"')
        self.assertEqual(decision.stage, PL.RECALL)

    def test_recall_without_history(self):
        cfg = _config(behavior={"templates": {"noRecall": "Nothing yet."}})
        decision = PL.resolve_decision(cfg, sm.SessionState(), "What was your last reply?", FakeProvider())
        self.assertEqual(decision.reply, "Nothing yet.")

    def test_two_provider_failures_escalate(self):
        cfg = _config(fallback={"answer": "FB1", "secondAnswer": "FB2"})
        state = sm.SessionState()
        provider = FakeProvider(CompletionError("down"), CompletionError("down"), TimeoutError("slow"))
        notice = cfg.behavior.templates.error_notice

        first = PL.resolve_decision(cfg, state, "can you build me a mobile app", provider)
        self.assertEqual(first.stage, PL.GENERATIVE_ERROR)
        self.assertTrue(first.reply.startswith("FB1"))
        self.assertIn(notice, first.reply)
        self.assertTrue(state.fallback_already_used)
        self.assertTrue(state.error_already_notified)

        second = PL.resolve_decision(cfg, state, "can you build me a mobile app", provider)
        self.assertEqual(second.reply, "FB2")
        self.assertNotEqual(first.reply, second.reply)

        third = PL.resolve_decision(cfg, state, "and a desktop app", provider)
        self.assertEqual(third.reply, "FB2")
        self.assertNotIn(notice, third.reply)


class TestStages(unittest.TestCase):
    def test_greeting_with_menu(self):
        cfg = _config(commonQuestions=["How much?", "How to install?"],
                      behavior={"templates": {"greeter": "Welcome!"}})
        state = sm.SessionState()
        decision = PL.resolve_decision(cfg, state, "Hello!", FakeProvider())
        self.assertEqual(decision.stage, PL.GREETING)
        self.assertEqual(decision.reply, "Welcome!\n\nYou can ask me things like:\n• How much?\n• How to install?")
        self.assertTrue(state.has_answered_before)

    def test_low_info_gets_clarification(self):
        cfg = _config(behavior={"templates": {"clarify": "Tell me more?"}})
        decision = PL.resolve_decision(cfg, sm.SessionState(), "ok", FakeProvider())
        self.assertEqual(decision.stage, PL.LOW_INFO)
        self.assertEqual(decision.reply, "Tell me more?")

    def test_greeter_disabled_skips_stage(self):
        cfg = _config(behavior={"greeterEnabled": False})
        provider = FakeProvider("Hello! Ask me anything about our chatbot.")
        decision = PL.resolve_decision(cfg, sm.SessionState(), "hello", provider)
        self.assertEqual(decision.stage, PL.GENERATIVE)
        self.assertEqual(len(provider.calls), 1)

    def test_semantic_hit_clears_fallback_flag(self):
        cfg = _config(faqs=[PRICING_FAQ])
        state = sm.SessionState(fallback_already_used=True)
        PL.resolve_decision(cfg, state, "pricing", FakeProvider())
        self.assertFalse(state.fallback_already_used)
        self.assertTrue(state.has_answered_before)

    def test_closing_only_after_an_answer(self):
        cfg = _config(faqs=[PRICING_FAQ], closingMessage="Bye!")
        state = sm.SessionState()
        provider = FakeProvider("Happy to help with anything else.")
        first = PL.resolve_decision(cfg, state, "no, that's all", provider)
        self.assertEqual(first.stage, PL.GENERATIVE)

        second = PL.resolve_decision(cfg, state, "no, that's all", provider)
        self.assertEqual(second.stage, PL.CLOSING)
        self.assertEqual(second.reply, "Bye!")

    def test_empty_closing_message_is_a_valid_reply(self):
        cfg = _config(faqs=[PRICING_FAQ])
        state = sm.SessionState(has_answered_before=True)
        decision = PL.resolve_decision(cfg, state, "nope", FakeProvider())
        self.assertEqual(decision.stage, PL.CLOSING)
        self.assertEqual(decision.reply, "")
        self.assertEqual(state.history[-1], {"role": "assistant", "content": ""})

    def test_generative_receives_grounding_and_history(self):
        cfg = _config(
            brandName="Acme",
            fewShot=[{"user": "Do you do apps?", "assistant": "Not that I know of."}],
            behavior={"historyTurns": 2},
        )
        state = sm.SessionState()
        for i in range(3):
            sm.append_turn(state, sm.USER, f"q{i}")
            sm.append_turn(state, sm.ASSISTANT, f"a{i}")
        provider = FakeProvider("We integrate with WordPress.")
        decision = PL.resolve_decision(cfg, state, "do you integrate with wordpress", provider)

        self.assertEqual(decision.reply, "We integrate with WordPress.")
        call = provider.calls[0]
        self.assertIn("AUTHORITATIVE PRICING:", call["system_prompt"])
        self.assertIn("Acme", call["system_prompt"])
        self.assertEqual(call["few_shot"][0].user, "Do you do apps?")
        self.assertEqual([t["content"] for t in call["prior_turns"]], ["q2", "a2"])
        self.assertEqual(call["user_message"], "do you integrate with wordpress")
        self.assertTrue(state.has_answered_before)

    def test_provider_pricing_answer_is_overridden(self):
        cfg = _config(faqs=[REFUND_FAQ])
        stages = [PL.recall_stage, PL.greeting_stage, PL.semantic_stage, PL.closing_stage, PL.generative_stage]
        provider = FakeProvider("It's only $10 a month!")
        decision = PL.resolve_decision(cfg, sm.SessionState(), "is there a monthly fee?", provider, stages=stages)
        self.assertEqual(decision.stage, PL.GENERATIVE)
        self.assertEqual(decision.reply, DEFAULT_PRICING)

    def test_degenerate_response_uses_first_fallback_then_escalates(self):
        cfg = _config(fallback={"answer": "FB1", "secondAnswer": "FB2"}, commonQuestions=["Pricing?"])
        state = sm.SessionState()
        provider = FakeProvider("  ...  ", CompletionError("down"))
        first = PL.resolve_decision(cfg, state, "tell me a joke", provider)
        self.assertEqual(first.stage, PL.GENERATIVE_EMPTY)
        self.assertEqual(first.reply, "FB1\n\nYou can ask me things like:\n• Pricing?")
        second = PL.resolve_decision(cfg, state, "tell me a joke", provider)
        self.assertTrue(second.reply.startswith("FB2"))

    def test_missing_provider_is_a_failure(self):
        cfg = _config(fallback={"answer": "FB1"})
        decision = PL.resolve_decision(cfg, sm.SessionState(), "tell me a joke", None)
        self.assertEqual(decision.stage, PL.GENERATIVE_ERROR)
        self.assertTrue(decision.reply.startswith("FB1"))

    def test_fallback_offers_contact(self):
        cfg = _config(faqs=[{"a": "Email help@acme.test", "keywords": ["email"]}], fallback={"answer": "Not sure."})
        decision = PL.resolve_decision(cfg, sm.SessionState(), "tell me a joke", FakeProvider(CompletionError("x")))
        self.assertTrue(decision.reply.startswith("Not sure. Email help@acme.test"))


class TestTurnInvariants(unittest.TestCase):
    def test_pricing_phrasings_always_get_pricing_line(self):
        cfg = _config(faqs=[PRICING_FAQ, REFUND_FAQ])
        for msg in ["how much does it cost?", "pricing please", "what fees do you charge",
                    "money back?", "Is there a subscription?", "PRICE"]:
            provider = FakeProvider("Something invented.")
            reply, _ = PL.resolve_turn(cfg, sm.SessionState(), msg, provider)
            self.assertEqual(reply, "We charge $35/mo", msg)

    def test_history_cap_holds_over_many_turns(self):
        cfg = _config(behavior={"historyTurns": 2})
        state = sm.SessionState(history_cap=4)
        provider = FakeProvider(*[f"answer {i}" for i in range(6)])
        for i in range(6):
            PL.resolve_decision(cfg, state, f"question number {i}", provider)
            self.assertLessEqual(len(state.history), 4)
        self.assertEqual(state.history[-2:], [
            {"role": "user", "content": "question number 5"},
            {"role": "assistant", "content": "answer 5"},
        ])

    def test_each_turn_appends_user_and_reply(self):
        state = sm.SessionState()
        PL.resolve_decision(_config(), state, "  hi  ", FakeProvider())
        self.assertEqual(state.history[0], {"role": "user", "content": "hi"})
        self.assertEqual(state.history[1]["role"], "assistant")
        self.assertEqual(len(state.history), 2)

    def test_replies_never_empty(self):
        cfg = _config(faqs=[PRICING_FAQ], closingMessage="See you!")
        state = sm.SessionState()
        provider = FakeProvider("", CompletionError("x"), "   ", CompletionError("y"), "Sure thing.")
        for msg in ["", "?!", "hi", "tell me a story", "what is this", "and then", "no",
                    "what was your last message?", "unrelated words here"]:
            reply, _ = PL.resolve_turn(cfg, state, msg, provider)
            self.assertTrue(reply.strip(), msg)

    def test_blank_templates_never_give_empty_reply(self):
        cfg = _config(behavior={"templates": {"greeter": "", "recall": "", "clarify": "  ", "noRecall": ""}})
        state = sm.SessionState()
        for msg in ["hello", "ok", "what was your last message?"]:
            reply, _ = PL.resolve_turn(cfg, state, msg, None)
            self.assertTrue(reply.strip(), msg)

    def test_repeated_recall_does_not_nest(self):
        state = sm.SessionState()
        sm.append_turn(state, sm.ASSISTANT, "Try our install guide")
        cfg = _config()
        for _ in range(3):
            reply, _ = PL.resolve_turn(cfg, state, "what did you say?", None)
            self.assertEqual(reply, 'My last message was: "Try our install guide"')

    def test_repeated_recall_without_history_stays_no_recall(self):
        cfg = _config()
        state = sm.SessionState()
        PL.resolve_turn(cfg, state, "what was your last reply?", None)
        reply, _ = PL.resolve_turn(cfg, state, "what was your last reply?", None)
        self.assertEqual(reply, cfg.behavior.templates.no_recall)

    def test_resolve_turn_returns_same_state(self):
        state = sm.SessionState()
        reply, updated = PL.resolve_turn(_config(), state, "hello", FakeProvider())
        self.assertIs(updated, state)
        self.assertTrue(reply)


if __name__ == "__main__":
    unittest.main()
