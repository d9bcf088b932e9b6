from types import SimpleNamespace
from unittest.mock import Mock
from uuid import uuid4

from app.services.context_service import build_system_prompt, format_knowledge_context, get_knowledge_entries


class TestFormatKnowledgeContext:
    def test_empty(self):
        assert format_knowledge_context([]) == ""

    def test_bullets(self):
        entries = [
            SimpleNamespace(title="Returns", content="30 days, unused items."),
            SimpleNamespace(title="Shipping", content="Free over $50."),
        ]

        assert format_knowledge_context(entries) == (
            "Relevant Knowledge Base:\n- Returns: 30 days, unused items.\n- Shipping: Free over $50."
        )

    def test_query_limits_to_ten(self):
        db = Mock()
        db.query().filter().order_by().limit().all.return_value = []

        get_knowledge_entries(db, uuid4())

        db.query().filter().order_by().limit.assert_called_with(10)


class TestBuildSystemPrompt:
    def test_sections_in_order(self):
        prompt = build_system_prompt(
            "You are Acme's assistant.",
            knowledge_context="Relevant Knowledge Base:\n- Returns: 30 days",
            commerce_context="ORDER INFORMATION:\nOrder: #1042",
        )

        assert prompt.startswith("You are Acme's assistant.")
        assert prompt.index("Relevant Knowledge Base") < prompt.index("ORDER INFORMATION") < prompt.index("Guidelines:")

    def test_guidelines_carry_escalation_marker(self):
        prompt = build_system_prompt("Be nice.")
        assert "[ESCALATE: <reason>]" in prompt
        assert "Relevant Knowledge Base" not in prompt

    def test_instructions_verbatim(self):
        instructions = "Line one.\n\n  Indented line two."
        assert build_system_prompt(instructions).startswith(instructions)

    def test_messaging_channels_ask_for_concise_replies(self):
        assert "suitable for WhatsApp messaging" in build_system_prompt("x", channel_type="whatsapp")
        assert "suitable for Instagram messaging" in build_system_prompt("x", channel_type="instagram")
        assert "messaging." not in build_system_prompt("x", channel_type="website")
