"""
Instruction builder tests.
"""

from dataclasses import replace

from outbound_bridge.src.instructions import build_instructions, fill_name, render_opening


def test_fill_name_variants():
    assert fill_name("Hi {name}!", "Dana") == "Hi Dana!"
    assert fill_name("Hi {{name}}!", "Dana") == "Hi Dana!"
    assert fill_name("Hi { name }, bye {NAME}", "Dana") == "Hi Dana, bye Dana"


def test_fill_name_uses_filler_when_identity_missing():
    assert fill_name("Hi {name}!", None) == "Hi there!"
    assert fill_name("Hi {name}!", "   ", filler="friend") == "Hi friend!"
    assert "{name}" not in fill_name("{name} {name}", "")


def test_identity_with_regex_characters_is_inserted_literally():
    assert fill_name("Hi {name}", r"Dana \1 $x") == r"Hi Dana \1 $x"


def test_render_opening(bridge_config):
    scripts = bridge_config.scripts

    assert render_opening(scripts, "Dana") == "Hi Dana, this is Maya from Acme."
    assert render_opening(scripts, None) == "Hi there, this is Maya from Acme."


def test_build_instructions_sections_in_order(bridge_config):
    text = build_instructions(bridge_config.scripts, "Dana")

    opening = text.index("Hi Dana, this is Maya from Acme.")
    general = text.index("Be polite.")
    business = text.index("Acme sells solar panels.")
    languages = text.index("Hebrew, English")
    closing = text.index("Thank you Dana, goodbye.")
    assert opening < general < business < languages < closing
    assert "{name}" not in text


def test_build_instructions_skips_empty_sections(bridge_config):
    scripts = replace(
        bridge_config.scripts,
        general_prompt="",
        business_prompt="  ",
        closing_script="",
        languages=("xx",),
    )

    text = build_instructions(scripts)

    assert "General guidelines" not in text
    assert "Business information" not in text
    assert "close with" not in text
    assert "Speak only these languages: xx." in text
