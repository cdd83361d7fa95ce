from supportdesk.services.prompt_builder import (
    ESCALATION_TOOL,
    ESCALATION_TOOL_NAME,
    PERSONALITY_PROMPTS,
    build_instructions,
    get_token_limit,
)


class TestBuildInstructions:
    def test_section_order(self):
        text = build_instructions("friendly", "brief", "Always sign off as Acme.", "We sell bikes.", [])

        persona = text.index(PERSONALITY_PROMPTS["friendly"])
        length = text.index("## Response length")
        custom = text.index("Always sign off as Acme.")
        context = text.index("We sell bikes.")
        handoff = text.index("## Handing off to support staff")
        rules = text.index("## Reply rules")
        assert persona < length < custom < context < handoff < rules

    def test_unknown_settings_use_defaults(self):
        text = build_instructions("pirate", "epic", None, None)

        assert text.startswith(PERSONALITY_PROMPTS["professional"])
        assert "No custom instructions provided." in text
        assert "No company context provided." in text

    def test_tenant_triggers_listed(self):
        text = build_instructions("professional", "medium", None, None, ["billing_questions", ""])

        assert "- billing_questions" in text
        assert "company-specific triggers" in text


class TestTokenLimits:
    def test_known_lengths(self):
        assert get_token_limit("brief") == 200
        assert get_token_limit("detailed") == 1500

    def test_unknown_length_is_medium(self):
        assert get_token_limit("whatever") == 500


def test_escalation_tool_schema():
    assert ESCALATION_TOOL["name"] == ESCALATION_TOOL_NAME == "escalate_to_human"
    assert ESCALATION_TOOL["parameters"]["required"] == ["reason"]
